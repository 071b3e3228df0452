"""Staged upload storage: local filesystem plus a Redis mirror for workers on other instances."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO

from redis.exceptions import RedisError

from scouter_importer.core.config import get_settings
from scouter_importer.storage.local_store import delete_upload, save_upload, uploads_dir
from scouter_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

# Redis key prefix for file storage
FILE_STORAGE_PREFIX = "files:upload:"
# Paused jobs may be resumed days later; the local copy is authoritative
FILE_STORAGE_TTL = 7 * 86400  # seconds
# Redis is only a mirror, larger uploads stay local
MAX_REDIS_FILE_BYTES = 100 * 1024 * 1024
REDIS_PATH_PREFIX = "redis:"


def _binary_client():
    return create_redis_client(get_settings().redis_url, decode_responses=False)


def store_file_in_redis(file_obj: BinaryIO, job_id: str) -> bool:
    """Store file content in Redis for worker access across separate instances.

    Returns:
        True if successfully stored, False otherwise
    """
    try:
        file_obj.seek(0)
        file_content = file_obj.read()

        if len(file_content) > MAX_REDIS_FILE_BYTES:
            logger.warning(
                f"File too large for Redis storage ({len(file_content)} bytes), "
                f"relying on local filesystem"
            )
            return False

        client = _binary_client()
        client.set(f"{FILE_STORAGE_PREFIX}{job_id}", file_content, ex=FILE_STORAGE_TTL)
        client.close()

        logger.info(f"Stored file in Redis for job {job_id} ({len(file_content)} bytes)")
        return True
    except RedisError as e:
        logger.warning(f"Failed to store file in Redis: {e}, will use local filesystem")
        return False


def get_file_from_redis(job_id: str) -> bytes | None:
    """Retrieve file content from Redis, or None if not found."""
    try:
        client = _binary_client()
        content = client.get(f"{FILE_STORAGE_PREFIX}{job_id}")
        client.close()
    except RedisError as e:
        logger.warning(f"Failed to retrieve file from Redis: {e}")
        return None
    if content:
        logger.info(f"Retrieved file from Redis for job {job_id} ({len(content)} bytes)")
    return content


def delete_file_from_redis(job_id: str) -> None:
    try:
        client = _binary_client()
        client.delete(f"{FILE_STORAGE_PREFIX}{job_id}")
        client.close()
    except RedisError as e:
        logger.warning(f"Failed to delete file from Redis: {e}")


def save_file_to_temp(file_content: bytes, job_id: str, original_name: str | None = None) -> Path:
    """Write mirrored content to a local file named after the job."""
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    target_path = uploads_dir() / f"{job_id}{suffix}"
    target_path.write_bytes(file_content)
    logger.info(f"Saved file to temporary location: {target_path}")
    return target_path


def stage_upload(file_obj: BinaryIO, job_id: str, original_name: str | None = None) -> str:
    """Stage an upload locally and in Redis; return the path stored on the job.

    Raises:
        ValueError: when neither location accepted the file
    """
    local_path: Path | None = None
    try:
        local_path = save_upload(file_obj, original_name)
    except OSError as e:
        logger.warning(f"Failed to save file locally: {e}, will use Redis only")

    redis_stored = store_file_in_redis(file_obj, job_id)

    if local_path is not None:
        return str(local_path)
    if redis_stored:
        return f"{REDIS_PATH_PREFIX}{job_id}"
    raise ValueError("Failed to stage file both locally and in Redis")


def resolve_job_file(job_id: str, file_path: str, file_name: str | None = None) -> Path:
    """Return a local path for the job's CSV, pulling the Redis mirror if needed.

    When nothing can be found the expected local path is returned anyway so
    the reader reports a readable "file not found" error.
    """
    if not file_path.startswith(REDIS_PATH_PREFIX):
        path = Path(file_path).resolve()
        if path.exists():
            return path
        logger.warning(f"Local file not found: {path}, trying Redis fallback for job {job_id}")
    else:
        path = uploads_dir() / f"{job_id}.csv"
        if path.exists():
            return path

    content = get_file_from_redis(job_id)
    if content:
        return save_file_to_temp(content, job_id, file_name)
    return path


def discard_staged_file(job_id: str, file_path: str | None) -> None:
    """Drop every staged copy of a job's upload."""
    if file_path and not file_path.startswith(REDIS_PATH_PREFIX):
        delete_upload(file_path)
    delete_upload(uploads_dir() / f"{job_id}.csv")
    delete_file_from_redis(job_id)
