"""
Local file storage for document versions and review attachments.

Workflows only keep the returned storage key; they never interpret file
contents.
"""
import os

from app.core import config
from app.core.database.base import generate_ulid
from app.utils import get_logger


log = get_logger(__name__)


def _root() -> str:
    """Get local storage directory path."""
    path = config.LOCAL_STORAGE_PATH
    os.makedirs(path, exist_ok=True)
    return path


def _safe_name(filename: str) -> str:
    name = os.path.basename(filename or "").strip()
    return name.replace(" ", "_") or "file"


def store_file(directory: str, filename: str, content: bytes) -> str:
    """
    Persist ``content`` under ``directory`` and return its storage key.

    The key is unique per call, so two uploads with the same name never
    overwrite each other.
    """
    storage_key = f"{directory.strip('/')}/{generate_ulid()}_{_safe_name(filename)}"
    path = os.path.join(_root(), storage_key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    log.debug("Stored %d bytes at %s", len(content), storage_key)
    return storage_key


def delete_file(storage_key: str) -> None:
    path = os.path.join(_root(), storage_key)
    if os.path.exists(path):
        os.remove(path)
        log.debug("Deleted %s", storage_key)


def file_url(storage_key: str) -> str:
    # Served by a static/file proxy in front of the API
    return f"/files/{storage_key}"
