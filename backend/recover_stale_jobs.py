#!/usr/bin/env python3
"""Pause import jobs left in 'processing' by a worker that was killed.

Run from cron or by hand after a host restart. Recovered jobs keep every
committed chunk; pass --resume to re-dispatch them straight away.
"""

import argparse
from datetime import timedelta

from scouter_importer.core.config import get_settings
from scouter_importer.core.logging_config import configure_logging
from scouter_importer.db.session import get_fresh_session
from scouter_importer.services.job_store import JobStore
from scouter_importer.services.lifecycle import LifecycleController
from scouter_importer.workers.tasks.import_leads import enqueue_import


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.stale_job_minutes,
        help="Treat jobs without a checkpoint for this long as stale",
    )
    parser.add_argument("--resume", action="store_true", help="Re-dispatch recovered jobs")
    args = parser.parse_args()

    configure_logging()
    session = get_fresh_session()
    try:
        lifecycle = LifecycleController(JobStore(session), enqueue_import)
        recovered = lifecycle.recover_stale_jobs(timedelta(minutes=args.minutes))
        print(f"Recovered {len(recovered)} stale job(s)")
        for job_id in recovered:
            if args.resume:
                lifecycle.resume(job_id)
                print(f"  {job_id}: resumed")
            else:
                print(f"  {job_id}: paused")
    finally:
        session.close()


if __name__ == "__main__":
    main()
