"""
Attachment File Storage

Writes uploaded bytes to disk under a per-report directory. Content is
flushed and synced before the caller commits the metadata row, and written
files are removed again if that commit fails.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from ...config import MAX_UPLOAD_BYTES, UPLOAD_ROOT
from ...models.workflow import UploadedFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    original_filename: str
    stored_filename: str
    file_path: str
    file_size: int
    content_type: Optional[str] = None


def clean_filename(filename: Optional[str]) -> Optional[str]:
    """Reduce a client-supplied name to its base name. None if unusable."""
    if not filename or "\x00" in filename:
        return None
    base = os.path.basename(filename.replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        return None
    return base


def validate_upload(upload: UploadedFile, max_bytes: int = MAX_UPLOAD_BYTES) -> Optional[str]:
    """Return an error message for an unacceptable upload, otherwise None."""
    if clean_filename(upload.filename) is None:
        return f"Invalid file name: {upload.filename!r}"
    if not upload.data:
        return f"File {clean_filename(upload.filename)} is empty"
    if len(upload.data) > max_bytes:
        return f"File {clean_filename(upload.filename)} exceeds the maximum size of {max_bytes} bytes"
    return None


class LocalFileStorage:
    """Stores attachment content on the local filesystem."""

    def __init__(self, root: str = UPLOAD_ROOT):
        self.root = root

    def save(self, report_id: str, upload: UploadedFile) -> StoredFile:
        original = clean_filename(upload.filename)
        if original is None:
            raise ValueError(f"Invalid file name: {upload.filename!r}")

        _, extension = os.path.splitext(original)
        stored_filename = f"{uuid4()}{extension.lower()}"
        directory = os.path.join(self.root, report_id)
        os.makedirs(directory, exist_ok=True)
        file_path = os.path.join(directory, stored_filename)

        with open(file_path, "wb") as handle:
            handle.write(upload.data)
            handle.flush()
            os.fsync(handle.fileno())

        logger.debug(f"Stored {original} for report {report_id} at {file_path}")
        return StoredFile(
            original_filename=original,
            stored_filename=stored_filename,
            file_path=file_path,
            file_size=len(upload.data),
            content_type=upload.content_type,
        )

    def remove(self, file_path: str) -> None:
        """Best-effort removal used for cleanup after a failed commit or a delete."""
        try:
            os.remove(file_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove stored file {file_path}: {e}")

    def exists(self, file_path: str) -> bool:
        return os.path.isfile(file_path)
