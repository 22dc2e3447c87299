"""Attachment service — file uploads bound to a task, at most five per task."""

import base64
import logging
import uuid
from datetime import datetime, timezone

from taskboard.services.repository import TaskRepository
from taskboard.services.storage import AttachmentStorage
from taskboard.services.task_rules import (
    MAX_ATTACHMENTS_PER_TASK,
    TaskRuleError,
    check_attachment_capacity,
    validate_file_name,
    validate_file_size,
    validate_file_type,
)
from taskboard.services.task_types import AttachmentRecord

logger = logging.getLogger(__name__)


def decode_content(file_content: bytes | str) -> bytes:
    """Uploads arrive base64-encoded in JSON bodies; raw bytes pass through."""
    if isinstance(file_content, bytes):
        return file_content
    return base64.b64decode(file_content, validate=True)


async def create_attachment(
    repo: TaskRepository,
    storage: AttachmentStorage,
    account_id: int,
    task_id: str,
    file_name: str,
    file_size: int,
    file_type: str,
    file_content: bytes | str,
    *,
    now: datetime | None = None,
) -> dict:
    """
    Attach a file to a live task.

    The parent row is locked for the whole unit of work and the insert itself
    re-checks the ceiling, so concurrent uploads cannot push a task past
    MAX_ATTACHMENTS_PER_TASK. Both the declared size and the decoded payload
    must fit under MAX_FILE_SIZE. If anything fails after the bytes were
    written, including the commit, the stored file is discarded.
    """
    now = now or datetime.now(timezone.utc)
    storage_url = None

    try:
        async with repo.atomic():
            if not await repo.get_task(account_id, task_id, for_update=True):
                raise TaskRuleError("taskNotFound")

            name = validate_file_name(file_name)
            kind = validate_file_type(file_type)
            size = validate_file_size(file_size)
            content = decode_content(file_content)
            validate_file_size(len(content))
            check_attachment_capacity(await repo.count_attachments(account_id, task_id))

            attachment_id = str(uuid.uuid4())
            storage_url = await storage.save(account_id, task_id, attachment_id, name, content)
            attachment = AttachmentRecord(
                id=attachment_id,
                account_id=account_id,
                task_id=task_id,
                file_name=name,
                file_size=size,
                file_type=kind,
                storage_url=storage_url,
                created_at=now,
            )

            if not await repo.add_attachment(account_id, attachment, limit=MAX_ATTACHMENTS_PER_TASK):
                raise TaskRuleError("tooManyAttachments")
    except TaskRuleError:
        if storage_url is not None:
            await storage.discard(storage_url)
        raise
    except Exception:
        if storage_url is not None:
            logger.exception("Attachment write failed task=%s, discarding %s", task_id, storage_url)
            await storage.discard(storage_url)
        raise

    logger.info("Attachment created id=%s task=%s size=%s", attachment_id, task_id, size)
    return {"attachment_id": attachment_id}


async def delete_attachment(
    repo: TaskRepository,
    storage: AttachmentStorage,
    account_id: int,
    task_id: str,
    attachment_id: str,
) -> dict:
    """Hard-delete an attachment and its stored file."""
    async with repo.atomic():
        attachment = await repo.get_attachment(account_id, task_id, attachment_id)
        if not attachment:
            raise TaskRuleError("attachmentNotFound")
        await repo.delete_attachment(account_id, task_id, attachment_id)

    await storage.discard(attachment.storage_url)
    logger.info("Attachment deleted id=%s task=%s", attachment_id, task_id)
    return {"success": True}
