"""Task API endpoints — tasks, subtasks and attachments, all scoped to the caller's account."""

import base64
import binascii
import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.core.database import get_db
from taskboard.core.security import AccountScope, get_current_account
from taskboard.services.attachment_service import create_attachment, delete_attachment
from taskboard.services.repository import SqlTaskRepository, TaskRepository
from taskboard.services.storage import AttachmentStorage, LocalAttachmentStorage
from taskboard.services.task_rules import TaskRuleError
from taskboard.services.task_service import (
    create_subtask,
    create_task,
    delete_task,
    get_task,
    list_tasks,
    update_subtask,
    update_task,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/internal", tags=["tasks"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_task_repository(db: AsyncSession = Depends(get_db)) -> TaskRepository:
    return SqlTaskRepository(db)


_storage: AttachmentStorage | None = None


def get_attachment_storage() -> AttachmentStorage:
    global _storage
    if _storage is None:
        _storage = LocalAttachmentStorage()
    return _storage


def _rule_error(e: TaskRuleError) -> HTTPException:
    logger.info("Request rejected: %s", e.code)
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND if e.is_not_found else status.HTTP_400_BAD_REQUEST,
        detail={"code": e.code, "message": e.message},
    )


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    due_date: date | None = None
    priority: int | None = None
    recurrence_config: Any = None
    is_draft: bool = False


class UpdateTaskRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    due_date: date | None = None
    priority: int | None = None
    status: int | None = None
    recurrence_config: Any = None
    is_draft: bool | None = None


class CreateSubtaskRequest(BaseModel):
    title: str | None = None
    description: str | None = None


class UpdateSubtaskRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    status: int | None = None


class CreateAttachmentRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size: int
    file_type: str
    file_content: str  # base64

    @field_validator("file_content")
    @classmethod
    def _must_be_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("file_content must be base64-encoded") from None
        return value


# ---------------------------------------------------------------------------
# Task CRUD Routes
# ---------------------------------------------------------------------------

@router.post("/task", status_code=status.HTTP_201_CREATED)
async def api_create_task(
    body: CreateTaskRequest,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Create a task (or a draft) for the calling user."""
    try:
        return await create_task(
            repo,
            scope.account_id,
            scope.user_id,
            title=body.title,
            description=body.description,
            due_date=body.due_date,
            priority=body.priority,
            recurrence_config=body.recurrence_config,
            is_draft=body.is_draft,
        )
    except TaskRuleError as e:
        raise _rule_error(e)


@router.get("/task")
async def api_list_tasks(
    user_id: int | None = Query(None, description="Only tasks owned by this user"),
    status_filter: int | None = Query(None, alias="status", description="0 draft .. 4 cancelled"),
    is_draft: bool | None = Query(None),
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """List the account's tasks, drafts first."""
    try:
        return await list_tasks(
            repo, scope.account_id, user_id=user_id, status=status_filter, is_draft=is_draft
        )
    except TaskRuleError as e:
        raise _rule_error(e)


@router.get("/task/{task_id}")
async def api_get_task(
    task_id: str,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Get a task with its subtasks and attachments."""
    try:
        return await get_task(repo, scope.account_id, task_id)
    except TaskRuleError as e:
        raise _rule_error(e)


@router.put("/task/{task_id}")
async def api_update_task(
    task_id: str,
    body: UpdateTaskRequest,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Update any subset of a task's fields."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validationError", "message": "No fields to update"},
        )
    try:
        return await update_task(repo, scope.account_id, task_id, updates)
    except TaskRuleError as e:
        raise _rule_error(e)


@router.delete("/task/{task_id}")
async def api_delete_task(
    task_id: str,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Delete a task and its subtasks."""
    try:
        return await delete_task(repo, scope.account_id, task_id)
    except TaskRuleError as e:
        raise _rule_error(e)


# ---------------------------------------------------------------------------
# Subtask Routes
# ---------------------------------------------------------------------------

@router.post("/task/{task_id}/subtask", status_code=status.HTTP_201_CREATED)
async def api_create_subtask(
    task_id: str,
    body: CreateSubtaskRequest,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Add a subtask at the end of the task's checklist."""
    try:
        return await create_subtask(
            repo, scope.account_id, task_id, title=body.title, description=body.description
        )
    except TaskRuleError as e:
        raise _rule_error(e)


@router.put("/task/{task_id}/subtask/{subtask_id}")
async def api_update_subtask(
    task_id: str,
    subtask_id: str,
    body: UpdateSubtaskRequest,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Rename, describe or complete a subtask."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validationError", "message": "No fields to update"},
        )
    try:
        return await update_subtask(repo, scope.account_id, task_id, subtask_id, updates)
    except TaskRuleError as e:
        raise _rule_error(e)


# ---------------------------------------------------------------------------
# Attachment Routes
# ---------------------------------------------------------------------------

@router.post("/task/{task_id}/attachment", status_code=status.HTTP_201_CREATED)
async def api_create_attachment(
    task_id: str,
    body: CreateAttachmentRequest,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    """Upload a file to a task."""
    try:
        return await create_attachment(
            repo,
            storage,
            scope.account_id,
            task_id,
            file_name=body.file_name,
            file_size=body.file_size,
            file_type=body.file_type,
            file_content=body.file_content,
        )
    except TaskRuleError as e:
        raise _rule_error(e)


@router.delete("/task/{task_id}/attachment/{attachment_id}")
async def api_delete_attachment(
    task_id: str,
    attachment_id: str,
    scope: AccountScope = Depends(get_current_account),
    repo: TaskRepository = Depends(get_task_repository),
    storage: AttachmentStorage = Depends(get_attachment_storage),
):
    """Remove a file from a task."""
    try:
        return await delete_attachment(repo, storage, scope.account_id, task_id, attachment_id)
    except TaskRuleError as e:
        raise _rule_error(e)
