#!/usr/bin/env python3
"""Start the import worker with suppressed security warnings for containerized environments."""

import sys
import warnings

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from scouter_importer.core.logging_config import configure_logging  # noqa: E402
from scouter_importer.workers.celery_app import IMPORT_QUEUE, celery_app  # noqa: E402

if __name__ == '__main__':
    configure_logging()
    # One job at a time: a run owns its job until it finishes or pauses
    celery_app.worker_main(
        argv=[
            'worker',
            '--loglevel=info',
            f'--queues={IMPORT_QUEUE},celery',
            '--pool=solo',
            '--without-mingle',
            '--without-gossip',
        ]
        + sys.argv[1:]
    )
