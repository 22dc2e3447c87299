"""Task service — task CRUD, draft lifecycle, subtasks and the ordered task list."""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any

from taskboard.services.repository import TaskRepository
from taskboard.services.task_rules import (
    SUBTASK_DESCRIPTION_MAX_LENGTH,
    TaskRuleError,
    initial_status,
    is_due_soon,
    parse_recurrence,
    resolve_status,
    sort_summaries,
    today_utc,
    validate_description,
    validate_due_date,
    validate_priority,
    validate_status,
    validate_subtask_status,
    validate_title,
)
from taskboard.services.task_types import (
    AttachmentRecord,
    SubtaskCounts,
    SubtaskRecord,
    SubtaskStatus,
    TaskPriority,
    TaskRecord,
    TaskSummary,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

async def create_task(
    repo: TaskRepository,
    account_id: int,
    user_id: int,
    title: str | None,
    description: str | None = None,
    due_date: date | None = None,
    priority: int | None = None,
    recurrence_config: Any = None,
    is_draft: bool = False,
    *,
    now: datetime | None = None,
) -> dict:
    """Create a task. Drafts start in Draft status, everything else in Pending."""
    now = now or datetime.now(timezone.utc)
    today = today_utc(now)

    # Keyword arguments evaluate in order, which is the order errors are reported in
    task = TaskRecord(
        id=str(uuid.uuid4()),
        account_id=account_id,
        user_id=user_id,
        title=validate_title(title),
        description=validate_description(description),
        due_date=validate_due_date(due_date, today),
        priority=validate_priority(priority),
        recurrence_config=parse_recurrence(recurrence_config, today),
        status=initial_status(bool(is_draft)),
        is_draft=bool(is_draft),
        created_at=now,
        updated_at=now,
    )

    async with repo.atomic():
        await repo.add_task(account_id, task)

    logger.info(
        "Task created id=%s account=%s draft=%s recurring=%s",
        task.id, account_id, task.is_draft, task.is_recurring,
    )
    return {"task_id": task.id}


async def list_tasks(
    repo: TaskRepository,
    account_id: int,
    user_id: int | None = None,
    status: int | None = None,
    is_draft: bool | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """List live tasks for an account, drafts first, then by priority, due date and age."""
    status_filter = validate_status(status) if status is not None else None
    today = today_utc(now)

    tasks = await repo.list_tasks(
        account_id, user_id=user_id, status=status_filter, is_draft=is_draft
    )
    counts = await repo.subtask_counts(account_id, [t.id for t in tasks])

    summaries = sort_summaries([
        TaskSummary(
            task=t,
            is_due_soon=is_due_soon(t, today),
            counts=counts.get(t.id, SubtaskCounts()),
        )
        for t in tasks
    ])

    return {
        "tasks": [_serialize_summary(s) for s in summaries],
        "total": len(summaries),
    }


async def get_task(
    repo: TaskRepository,
    account_id: int,
    task_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Get a single task with its subtasks and attachments."""
    task = await repo.get_task(account_id, task_id)
    if not task:
        raise TaskRuleError("taskNotFound")

    subtasks = await repo.list_subtasks(account_id, task_id)
    attachments = await repo.list_attachments(account_id, task_id)

    data = _serialize_task(task)
    data["is_due_soon"] = is_due_soon(task, today_utc(now))
    data["subtasks"] = [_serialize_subtask(s) for s in subtasks]
    data["attachments"] = [_serialize_attachment(a) for a in attachments]
    return data


async def update_task(
    repo: TaskRepository,
    account_id: int,
    task_id: str,
    updates: dict,
    *,
    now: datetime | None = None,
) -> dict:
    """
    Apply a partial update.

    Only keys present in ``updates`` are touched. ``None`` for priority,
    status or is_draft means "leave unchanged"; ``None``, ``{}`` or ``""`` for
    recurrence_config clears recurrence.
    """
    now = now or datetime.now(timezone.utc)
    today = today_utc(now)

    async with repo.atomic():
        task = await repo.get_task(account_id, task_id, for_update=True)
        if not task:
            raise TaskRuleError("taskNotFound")

        if "title" in updates:
            task.title = validate_title(updates["title"])
        if "description" in updates:
            task.description = validate_description(updates["description"])
        if "due_date" in updates:
            task.due_date = validate_due_date(updates["due_date"], today)
        if updates.get("priority") is not None:
            task.priority = validate_priority(updates["priority"])

        status = None
        if updates.get("status") is not None:
            status = validate_status(updates["status"])

        if "recurrence_config" in updates:
            task.recurrence_config = parse_recurrence(updates["recurrence_config"], today)

        is_draft = updates.get("is_draft")
        if is_draft is not None:
            is_draft = bool(is_draft)
        new_status = resolve_status(task, is_draft, status)
        if is_draft is not None:
            task.is_draft = is_draft
        if new_status != task.status:
            logger.info("Task %s status %s -> %s", task.id, task.status.name, new_status.name)
        task.status = new_status
        task.updated_at = now

        await repo.save_task(account_id, task)

    return {"success": True}


async def delete_task(
    repo: TaskRepository,
    account_id: int,
    task_id: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Soft-delete a task together with its subtasks."""
    now = now or datetime.now(timezone.utc)
    async with repo.atomic():
        if not await repo.soft_delete_task(account_id, task_id, now):
            raise TaskRuleError("taskNotFound")

    logger.info("Task deleted id=%s account=%s", task_id, account_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------

async def create_subtask(
    repo: TaskRepository,
    account_id: int,
    task_id: str,
    title: str | None,
    description: str | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """Append a subtask to the end of a task's checklist."""
    now = now or datetime.now(timezone.utc)

    async with repo.atomic():
        parent = await repo.get_task(account_id, task_id, for_update=True)
        if not parent:
            raise TaskRuleError("taskNotFound")

        subtask = SubtaskRecord(
            id=str(uuid.uuid4()),
            account_id=account_id,
            task_id=task_id,
            title=validate_title(title),
            description=validate_description(description, SUBTASK_DESCRIPTION_MAX_LENGTH),
            status=SubtaskStatus.PENDING,
            order_index=await repo.next_subtask_order(account_id, task_id),
            created_at=now,
            updated_at=now,
        )
        await repo.add_subtask(account_id, subtask)

    return {"subtask_id": subtask.id}


async def update_subtask(
    repo: TaskRepository,
    account_id: int,
    task_id: str,
    subtask_id: str,
    updates: dict,
    *,
    now: datetime | None = None,
) -> dict:
    """Update a subtask's title, description or status."""
    now = now or datetime.now(timezone.utc)

    async with repo.atomic():
        if not await repo.get_task(account_id, task_id):
            raise TaskRuleError("taskNotFound")
        subtask = await repo.get_subtask(account_id, task_id, subtask_id)
        if not subtask:
            raise TaskRuleError("subtaskNotFound")

        if "title" in updates:
            subtask.title = validate_title(updates["title"])
        if "description" in updates:
            subtask.description = validate_description(
                updates["description"], SUBTASK_DESCRIPTION_MAX_LENGTH
            )
        if updates.get("status") is not None:
            subtask.status = validate_subtask_status(updates["status"])
        subtask.updated_at = now

        await repo.save_subtask(account_id, subtask)

    return {"success": True}


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------

def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_task(task: TaskRecord) -> dict:
    return {
        "id": task.id,
        "user_id": task.user_id,
        "title": task.title,
        "description": task.description,
        "due_date": _iso(task.due_date),
        "priority": int(task.priority),
        "status": int(task.status),
        "is_draft": task.is_draft,
        "is_recurring": task.is_recurring,
        "recurrence_config": task.recurrence_config.to_dict() if task.recurrence_config else None,
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
    }


def _serialize_summary(summary: TaskSummary) -> dict:
    data = _serialize_task(summary.task)
    data.update({
        "is_due_soon": summary.is_due_soon,
        "is_urgent": summary.is_due_soon,
        "is_high_priority": summary.task.priority == TaskPriority.HIGH,
        "subtask_count": summary.counts.total,
        "completed_subtask_count": summary.counts.completed,
    })
    return data


def _serialize_subtask(subtask: SubtaskRecord) -> dict:
    return {
        "id": subtask.id,
        "title": subtask.title,
        "description": subtask.description,
        "status": int(subtask.status),
        "order_index": subtask.order_index,
        "created_at": _iso(subtask.created_at),
    }


def _serialize_attachment(attachment: AttachmentRecord) -> dict:
    return {
        "id": attachment.id,
        "file_name": attachment.file_name,
        "file_size": attachment.file_size,
        "file_type": attachment.file_type.value,
        "storage_url": attachment.storage_url,
        "created_at": _iso(attachment.created_at),
    }
