"""Local upload directory: the authoritative copy of every staged CSV."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from scouter_importer.core.config import get_settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    path = Path(get_settings().uploads_dir).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_upload(file_obj: BinaryIO, original_name: str | None = None) -> Path:
    """Copy an upload under a random name in the uploads directory."""
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    target_path = (uploads_dir() / f"{uuid.uuid4()}{suffix}").resolve()
    file_obj.seek(0)
    with target_path.open("wb") as destination:
        shutil.copyfileobj(file_obj, destination)
    return target_path


def delete_upload(uri: str | Path) -> None:
    """Remove a staged file; a missing file is not an error."""
    path = Path(uri)
    if not path.is_absolute():
        path = path.resolve()
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to delete staged upload {path}: {e}")
