"""Progress/ETA computation and the Redis snapshot used by live views."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from redis.exceptions import RedisError

from scouter_importer.core.config import get_settings
from scouter_importer.utils.redis_client import create_redis_client

settings = get_settings()
redis_client = create_redis_client(settings.redis_url, decode_responses=True)
PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)

# Lower bound for the rate used in ETA division
MIN_RATE = 1e-6


@dataclass(frozen=True)
class ProgressReport:
    percent: float | None
    elapsed_ms: int
    rows_per_second: float
    eta_seconds: float | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_progress(job: Any, now: datetime | None = None) -> ProgressReport:
    """Derive throughput and remaining time from a job record.

    Advisory only: the result is recomputed on every poll and never written
    back. ``eta_seconds`` is None until the total is known and at least one
    row has been processed.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    processed = job.processed_rows or 0
    total = job.total_rows

    elapsed_ms = 0
    if job.started_at is not None:
        end = job.completed_at or now
        elapsed_ms = max(0, int((_as_utc(end) - _as_utc(job.started_at)).total_seconds() * 1000))

    rate = processed / (elapsed_ms / 1000) if elapsed_ms > 0 else 0.0

    percent = None
    eta_seconds = None
    if total is not None:
        percent = round(processed / total * 100, 2) if total > 0 else 100.0
        remaining = max(total - processed, 0)
        if remaining == 0:
            eta_seconds = 0.0
        elif processed > 0:
            eta_seconds = round(remaining / max(rate, MIN_RATE), 1)

    return ProgressReport(
        percent=percent,
        elapsed_ms=elapsed_ms,
        rows_per_second=round(rate, 2),
        eta_seconds=eta_seconds,
    )


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Persist a progress snapshot so live views can show the latest message."""
    payload = {
        "job_id": job_id,
        "progress": max(0.0, min(progress, 1.0)),
        "message": message,
        "status": status,
        "meta": meta or {},
    }
    try:
        redis_client.set(
            _key(job_id),
            json.dumps(payload),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError:
        # Redis availability should not break ingestion.
        pass


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest snapshot, or an empty dict when none is cached."""
    try:
        raw = redis_client.get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}


def clear_progress(job_id: str) -> None:
    try:
        redis_client.delete(_key(job_id))
    except RedisError:
        pass
