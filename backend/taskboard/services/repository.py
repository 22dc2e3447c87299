"""Repository contract for tasks, subtasks and attachments, and its SQLAlchemy adapter.

Every method takes ``account_id`` first. Nothing can be looked up by id alone.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime

from sqlalchemy import case, func, insert, literal, select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.models.attachment import TaskAttachment
from taskboard.models.task import Subtask, Task
from taskboard.services.task_rules import recurrence_from_json, recurrence_to_json
from taskboard.services.task_types import (
    AttachmentRecord,
    FileType,
    SubtaskCounts,
    SubtaskRecord,
    SubtaskStatus,
    TaskPriority,
    TaskRecord,
    TaskStatus,
)

logger = logging.getLogger(__name__)


def check_scope(account_id: int, record_account_id: int) -> None:
    if account_id != record_account_id:
        raise ValueError(
            f"record belongs to account {record_account_id}, not {account_id}"
        )


class TaskRepository(ABC):
    """Storage collaborator used by the task and attachment services."""

    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager[None]:
        """Unit of work: commit on success, roll back on any exception."""

    # ---- tasks ----

    @abstractmethod
    async def add_task(self, account_id: int, task: TaskRecord) -> None: ...

    @abstractmethod
    async def get_task(
        self, account_id: int, task_id: str, *, for_update: bool = False
    ) -> TaskRecord | None:
        """Non-deleted task or None. ``for_update`` locks the row until the unit of work ends."""

    @abstractmethod
    async def list_tasks(
        self,
        account_id: int,
        *,
        user_id: int | None = None,
        status: TaskStatus | None = None,
        is_draft: bool | None = None,
    ) -> list[TaskRecord]: ...

    @abstractmethod
    async def save_task(self, account_id: int, task: TaskRecord) -> None: ...

    @abstractmethod
    async def soft_delete_task(self, account_id: int, task_id: str, now: datetime) -> bool:
        """Flag the task and all its live subtasks deleted. False if there was no live task."""

    # ---- subtasks ----

    @abstractmethod
    async def add_subtask(self, account_id: int, subtask: SubtaskRecord) -> None: ...

    @abstractmethod
    async def get_subtask(
        self, account_id: int, task_id: str, subtask_id: str
    ) -> SubtaskRecord | None: ...

    @abstractmethod
    async def save_subtask(self, account_id: int, subtask: SubtaskRecord) -> None: ...

    @abstractmethod
    async def list_subtasks(self, account_id: int, task_id: str) -> list[SubtaskRecord]:
        """Live subtasks in order_index order."""

    @abstractmethod
    async def next_subtask_order(self, account_id: int, task_id: str) -> int: ...

    @abstractmethod
    async def subtask_counts(
        self, account_id: int, task_ids: Iterable[str]
    ) -> dict[str, SubtaskCounts]: ...

    # ---- attachments ----

    @abstractmethod
    async def list_attachments(self, account_id: int, task_id: str) -> list[AttachmentRecord]: ...

    @abstractmethod
    async def count_attachments(self, account_id: int, task_id: str) -> int: ...

    @abstractmethod
    async def add_attachment(
        self, account_id: int, attachment: AttachmentRecord, *, limit: int
    ) -> bool:
        """
        Insert only if the parent task is live and has fewer than ``limit``
        attachments, as one atomic statement. Returns False when the guard refused.
        """

    @abstractmethod
    async def get_attachment(
        self, account_id: int, task_id: str, attachment_id: str
    ) -> AttachmentRecord | None: ...

    @abstractmethod
    async def delete_attachment(self, account_id: int, task_id: str, attachment_id: str) -> bool:
        """Hard delete. False if nothing matched."""


# ---------------------------------------------------------------------------
# SQLAlchemy adapter
# ---------------------------------------------------------------------------

def _task_to_record(row: Task) -> TaskRecord:
    return TaskRecord(
        id=row.id,
        account_id=row.account_id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        due_date=row.due_date,
        priority=TaskPriority(row.priority),
        status=TaskStatus(row.status),
        recurrence_config=recurrence_from_json(row.recurrence_config),
        is_draft=bool(row.is_draft),
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted=bool(row.deleted),
    )


def _subtask_to_record(row: Subtask) -> SubtaskRecord:
    return SubtaskRecord(
        id=row.id,
        account_id=row.account_id,
        task_id=row.task_id,
        title=row.title,
        description=row.description,
        status=SubtaskStatus(row.status),
        order_index=row.order_index,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted=bool(row.deleted),
    )


def _attachment_to_record(row: TaskAttachment) -> AttachmentRecord:
    return AttachmentRecord(
        id=row.id,
        account_id=row.account_id,
        task_id=row.task_id,
        file_name=row.file_name,
        file_size=row.file_size,
        file_type=FileType(row.file_type),
        storage_url=row.storage_url,
        created_at=row.created_at,
    )


class SqlTaskRepository(TaskRepository):
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        try:
            yield
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

    def _live_task(self, account_id: int, task_id: str):
        return (
            Task.id == task_id,
            Task.account_id == account_id,
            Task.deleted.is_(False),
        )

    # ---- tasks ----

    async def add_task(self, account_id: int, task: TaskRecord) -> None:
        check_scope(account_id, task.account_id)
        self._db.add(
            Task(
                id=task.id,
                account_id=account_id,
                user_id=task.user_id,
                title=task.title,
                description=task.description,
                due_date=task.due_date,
                priority=int(task.priority),
                status=int(task.status),
                is_recurring=task.is_recurring,
                recurrence_config=recurrence_to_json(task.recurrence_config),
                is_draft=task.is_draft,
                created_at=task.created_at,
                updated_at=task.updated_at,
                deleted=False,
            )
        )
        await self._db.flush()

    async def get_task(
        self, account_id: int, task_id: str, *, for_update: bool = False
    ) -> TaskRecord | None:
        query = select(Task).where(*self._live_task(account_id, task_id))
        if for_update:
            query = query.with_for_update()
        result = await self._db.execute(query)
        row = result.scalar_one_or_none()
        return _task_to_record(row) if row else None

    async def list_tasks(
        self,
        account_id: int,
        *,
        user_id: int | None = None,
        status: TaskStatus | None = None,
        is_draft: bool | None = None,
    ) -> list[TaskRecord]:
        query = select(Task).where(Task.account_id == account_id, Task.deleted.is_(False))
        if user_id is not None:
            query = query.where(Task.user_id == user_id)
        if status is not None:
            query = query.where(Task.status == int(status))
        if is_draft is not None:
            query = query.where(Task.is_draft.is_(is_draft))

        result = await self._db.execute(query)
        return [_task_to_record(row) for row in result.scalars().all()]

    async def save_task(self, account_id: int, task: TaskRecord) -> None:
        check_scope(account_id, task.account_id)
        await self._db.execute(
            update(Task)
            .where(*self._live_task(account_id, task.id))
            .values(
                title=task.title,
                description=task.description,
                due_date=task.due_date,
                priority=int(task.priority),
                status=int(task.status),
                is_recurring=task.is_recurring,
                recurrence_config=recurrence_to_json(task.recurrence_config),
                is_draft=task.is_draft,
                updated_at=task.updated_at,
            )
        )

    async def soft_delete_task(self, account_id: int, task_id: str, now: datetime) -> bool:
        result = await self._db.execute(
            update(Task)
            .where(*self._live_task(account_id, task_id))
            .values(deleted=True, updated_at=now)
        )
        if result.rowcount == 0:
            return False
        cascaded = await self._db.execute(
            update(Subtask)
            .where(
                Subtask.task_id == task_id,
                Subtask.account_id == account_id,
                Subtask.deleted.is_(False),
            )
            .values(deleted=True, updated_at=now)
        )
        logger.debug("Soft-deleted task=%s subtasks=%s", task_id, cascaded.rowcount)
        return True

    # ---- subtasks ----

    async def add_subtask(self, account_id: int, subtask: SubtaskRecord) -> None:
        check_scope(account_id, subtask.account_id)
        self._db.add(
            Subtask(
                id=subtask.id,
                account_id=account_id,
                task_id=subtask.task_id,
                title=subtask.title,
                description=subtask.description,
                status=int(subtask.status),
                order_index=subtask.order_index,
                created_at=subtask.created_at,
                updated_at=subtask.updated_at,
                deleted=False,
            )
        )
        await self._db.flush()

    async def get_subtask(
        self, account_id: int, task_id: str, subtask_id: str
    ) -> SubtaskRecord | None:
        result = await self._db.execute(
            select(Subtask).where(
                Subtask.id == subtask_id,
                Subtask.task_id == task_id,
                Subtask.account_id == account_id,
                Subtask.deleted.is_(False),
            )
        )
        row = result.scalar_one_or_none()
        return _subtask_to_record(row) if row else None

    async def save_subtask(self, account_id: int, subtask: SubtaskRecord) -> None:
        check_scope(account_id, subtask.account_id)
        await self._db.execute(
            update(Subtask)
            .where(
                Subtask.id == subtask.id,
                Subtask.task_id == subtask.task_id,
                Subtask.account_id == account_id,
                Subtask.deleted.is_(False),
            )
            .values(
                title=subtask.title,
                description=subtask.description,
                status=int(subtask.status),
                updated_at=subtask.updated_at,
            )
        )

    async def list_subtasks(self, account_id: int, task_id: str) -> list[SubtaskRecord]:
        result = await self._db.execute(
            select(Subtask)
            .where(
                Subtask.task_id == task_id,
                Subtask.account_id == account_id,
                Subtask.deleted.is_(False),
            )
            .order_by(Subtask.order_index)
        )
        return [_subtask_to_record(row) for row in result.scalars().all()]

    async def next_subtask_order(self, account_id: int, task_id: str) -> int:
        result = await self._db.execute(
            select(func.max(Subtask.order_index)).where(
                Subtask.task_id == task_id,
                Subtask.account_id == account_id,
                Subtask.deleted.is_(False),
            )
        )
        current = result.scalar()
        return 0 if current is None else current + 1

    async def subtask_counts(
        self, account_id: int, task_ids: Iterable[str]
    ) -> dict[str, SubtaskCounts]:
        ids = list(task_ids)
        if not ids:
            return {}
        result = await self._db.execute(
            select(
                Subtask.task_id,
                func.count(Subtask.id),
                func.sum(case((Subtask.status == int(SubtaskStatus.COMPLETED), 1), else_=0)),
            )
            .where(
                Subtask.account_id == account_id,
                Subtask.task_id.in_(ids),
                Subtask.deleted.is_(False),
            )
            .group_by(Subtask.task_id)
        )
        return {
            task_id: SubtaskCounts(total=int(total), completed=int(completed or 0))
            for task_id, total, completed in result.all()
        }

    # ---- attachments ----

    async def list_attachments(self, account_id: int, task_id: str) -> list[AttachmentRecord]:
        result = await self._db.execute(
            select(TaskAttachment)
            .where(TaskAttachment.task_id == task_id, TaskAttachment.account_id == account_id)
            .order_by(TaskAttachment.created_at)
        )
        return [_attachment_to_record(row) for row in result.scalars().all()]

    async def count_attachments(self, account_id: int, task_id: str) -> int:
        result = await self._db.execute(
            select(func.count(TaskAttachment.id)).where(
                TaskAttachment.task_id == task_id, TaskAttachment.account_id == account_id
            )
        )
        return int(result.scalar() or 0)

    async def add_attachment(
        self, account_id: int, attachment: AttachmentRecord, *, limit: int
    ) -> bool:
        check_scope(account_id, attachment.account_id)
        cols = TaskAttachment.__table__.c

        existing = (
            select(func.count(TaskAttachment.id))
            .where(
                TaskAttachment.task_id == attachment.task_id,
                TaskAttachment.account_id == account_id,
            )
            .correlate(None)
            .scalar_subquery()
        )
        parent_alive = (
            select(Task.id)
            .where(*self._live_task(account_id, attachment.task_id))
            .correlate(None)
            .exists()
        )
        values = {
            "id": attachment.id,
            "account_id": account_id,
            "task_id": attachment.task_id,
            "file_name": attachment.file_name,
            "file_size": attachment.file_size,
            "file_type": attachment.file_type.value,
            "storage_url": attachment.storage_url,
            "created_at": attachment.created_at,
        }
        source = select(
            *(literal(value, cols[name].type) for name, value in values.items())
        ).where(existing < limit, parent_alive)

        result = await self._db.execute(
            insert(TaskAttachment.__table__).from_select(list(values), source)
        )
        return result.rowcount == 1

    async def get_attachment(
        self, account_id: int, task_id: str, attachment_id: str
    ) -> AttachmentRecord | None:
        result = await self._db.execute(
            select(TaskAttachment).where(
                TaskAttachment.id == attachment_id,
                TaskAttachment.task_id == task_id,
                TaskAttachment.account_id == account_id,
            )
        )
        row = result.scalar_one_or_none()
        return _attachment_to_record(row) if row else None

    async def delete_attachment(self, account_id: int, task_id: str, attachment_id: str) -> bool:
        result = await self._db.execute(
            delete(TaskAttachment).where(
                TaskAttachment.id == attachment_id,
                TaskAttachment.task_id == task_id,
                TaskAttachment.account_id == account_id,
            )
        )
        return result.rowcount == 1
