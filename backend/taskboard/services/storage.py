"""Attachment storage — where uploaded file bytes live and how they are addressed."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

from taskboard.core.config import settings

logger = logging.getLogger(__name__)

BLOB_NAME = "content"


class AttachmentStorage(ABC):
    @abstractmethod
    async def save(self, account_id: int, task_id: str, attachment_id: str, file_name: str, content: bytes) -> str:
        """Store the bytes and return the storage URL."""

    @abstractmethod
    async def discard(self, storage_url: str) -> None:
        """Remove previously stored bytes. Missing files are ignored."""


def _safe_component(value: str) -> bool:
    return value not in ("", ".", "..") and "/" not in value and "\\" not in value


class LocalAttachmentStorage(AttachmentStorage):
    """
    Writes each upload to ``root/<task>/<attachment>/content`` and hands out
    URLs shaped ``<base_url>/tasks/<task>/<attachment>/<quoted file name>``.

    The client's file name only appears in the URL, never on disk, so the
    path can always be recovered from the URL alone.
    """

    def __init__(self, root: str | Path | None = None, base_url: str | None = None) -> None:
        self._root = Path(root or settings.attachment_dir)
        self._base_url = (base_url or settings.storage_base_url).rstrip("/")

    def url_for(self, task_id: str, attachment_id: str, file_name: str) -> str:
        return f"{self._base_url}/tasks/{task_id}/{attachment_id}/{quote(file_name, safe='')}"

    def path_for(self, task_id: str, attachment_id: str) -> Path:
        if not (_safe_component(task_id) and _safe_component(attachment_id)):
            raise ValueError(f"unsafe storage key {task_id!r}/{attachment_id!r}")
        return self._root / task_id / attachment_id / BLOB_NAME

    async def save(self, account_id: int, task_id: str, attachment_id: str, file_name: str, content: bytes) -> str:
        path = self.path_for(task_id, attachment_id)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.debug(
            "Stored attachment %s for account %s (%d bytes) at %s",
            attachment_id, account_id, len(content), path,
        )
        return self.url_for(task_id, attachment_id, file_name)

    async def discard(self, storage_url: str) -> None:
        path = self.path_from_url(storage_url)
        if path is None:
            logger.warning("Not discarding foreign storage URL %s", storage_url)
            return
        await asyncio.to_thread(path.unlink, missing_ok=True)

    def path_from_url(self, storage_url: str) -> Path | None:
        prefix = f"{self._base_url}/tasks/"
        if not storage_url.startswith(prefix):
            return None
        parts = storage_url[len(prefix):].split("/")
        if len(parts) != 3:
            return None
        task_id, attachment_id, _ = parts
        if not (_safe_component(task_id) and _safe_component(attachment_id)):
            return None
        return self._root / task_id / attachment_id / BLOB_NAME
