"""Task rules — field validation, recurrence, status lifecycle, attachment admission, list ordering.

Everything here is pure: no I/O, no clock reads. Callers pass ``today`` in.
"""

import json
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any

from taskboard.services.task_types import (
    FileType,
    RecurrenceConfig,
    RecurrenceType,
    SubtaskStatus,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    TaskSummary,
)

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 100
TASK_DESCRIPTION_MAX_LENGTH = 1000
SUBTASK_DESCRIPTION_MAX_LENGTH = 500
RECURRENCE_INTERVAL_MIN = 1
RECURRENCE_INTERVAL_MAX = 365
FILE_NAME_MAX_LENGTH = 255
MAX_FILE_SIZE = 5 * 1024 * 1024
MAX_ATTACHMENTS_PER_TASK = 5

ERROR_MESSAGES = {
    "titleRequired": "Task title is required",
    "titleTooShort": f"Title must be at least {TITLE_MIN_LENGTH} characters",
    "titleTooLong": f"Title must be at most {TITLE_MAX_LENGTH} characters",
    "descriptionTooLong": "Description is too long",
    "dueDateInPast": "Due date cannot be earlier than today",
    "invalidPriority": "Invalid priority. Use: 0 (low), 1 (medium), 2 (high)",
    "invalidStatus": "Invalid status",
    "invalidRecurrenceType": "Invalid recurrence type. Use: daily, weekly, monthly, yearly",
    "invalidRecurrenceInterval": (
        f"Recurrence interval must be between {RECURRENCE_INTERVAL_MIN} and {RECURRENCE_INTERVAL_MAX}"
    ),
    "invalidRecurrenceEndDate": "Recurrence end date must be after today",
    "invalidRecurrenceConfig": "Invalid recurrence configuration",
    "taskNotFound": "Task not found",
    "subtaskNotFound": "Subtask not found",
    "attachmentNotFound": "Attachment not found",
    "invalidFileFormat": "Invalid file format. Accepted formats: pdf, doc, docx, jpg, png",
    "fileTooLarge": "File size must be between 1 byte and 5MB",
    "tooManyAttachments": f"Maximum {MAX_ATTACHMENTS_PER_TASK} attachments per task exceeded",
}


class TaskRuleError(Exception):
    """A business-rule rejection. ``code`` is one of the keys of ERROR_MESSAGES."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code
        self.message = ERROR_MESSAGES.get(code, code)

    @property
    def is_not_found(self) -> bool:
        return self.code.endswith("NotFound")


def today_utc(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def validate_title(title: str | None) -> str:
    """Return the trimmed title."""
    if title is None or not title.strip():
        raise TaskRuleError("titleRequired")
    trimmed = title.strip()
    if len(trimmed) < TITLE_MIN_LENGTH:
        raise TaskRuleError("titleTooShort")
    if len(trimmed) > TITLE_MAX_LENGTH:
        raise TaskRuleError("titleTooLong")
    return trimmed


def validate_description(description: str | None, max_length: int = TASK_DESCRIPTION_MAX_LENGTH) -> str | None:
    if not description:
        return None
    if len(description) > max_length:
        raise TaskRuleError("descriptionTooLong")
    return description


def validate_due_date(due_date: date | datetime | None, today: date) -> date | None:
    if due_date is None:
        return None
    # Day granularity: the time of day never matters
    if isinstance(due_date, datetime):
        due_date = due_date.date()
    if due_date < today:
        raise TaskRuleError("dueDateInPast")
    return due_date


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_priority(priority: int | None) -> TaskPriority:
    if priority is None:
        return TaskPriority.MEDIUM
    if not _is_int(priority) or not TaskPriority.LOW <= priority <= TaskPriority.HIGH:
        raise TaskRuleError("invalidPriority")
    return TaskPriority(priority)


def validate_status(status: int) -> TaskStatus:
    if not _is_int(status) or not TaskStatus.DRAFT <= status <= TaskStatus.CANCELLED:
        raise TaskRuleError("invalidStatus")
    return TaskStatus(status)


def validate_subtask_status(status: int) -> SubtaskStatus:
    if not _is_int(status) or not SubtaskStatus.PENDING <= status <= SubtaskStatus.COMPLETED:
        raise TaskRuleError("invalidStatus")
    return SubtaskStatus(status)


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------

def _parse_end_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            raise TaskRuleError("invalidRecurrenceConfig") from None
    raise TaskRuleError("invalidRecurrenceConfig")


def parse_recurrence(raw: Any, today: date) -> RecurrenceConfig | None:
    """
    Validate a recurrence descriptor.

    ``None``, ``{}`` and ``""`` mean "no recurrence" and return None.
    JSON text is accepted as well as a mapping or an existing RecurrenceConfig.
    """
    if isinstance(raw, RecurrenceConfig):
        raw = raw.to_dict()
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise TaskRuleError("invalidRecurrenceConfig") from None
    if not isinstance(raw, Mapping):
        raise TaskRuleError("invalidRecurrenceConfig")
    if not raw:
        return None

    try:
        kind = RecurrenceType(raw.get("type"))
    except ValueError:
        raise TaskRuleError("invalidRecurrenceType") from None

    interval = raw.get("interval")
    if not _is_int(interval) or not RECURRENCE_INTERVAL_MIN <= interval <= RECURRENCE_INTERVAL_MAX:
        raise TaskRuleError("invalidRecurrenceInterval")

    end_date = _parse_end_date(raw.get("end_date"))
    if end_date is not None and end_date <= today:
        raise TaskRuleError("invalidRecurrenceEndDate")

    return RecurrenceConfig(type=kind, interval=interval, end_date=end_date)


def recurrence_to_json(config: RecurrenceConfig | None) -> str | None:
    if config is None:
        return None
    return json.dumps(config.to_dict())


def recurrence_from_json(raw: str | None) -> RecurrenceConfig | None:
    """Decode stored recurrence JSON. Stored rows were validated on write; no date check here."""
    if not raw:
        return None
    data = json.loads(raw)
    return RecurrenceConfig(
        type=RecurrenceType(data["type"]),
        interval=int(data["interval"]),
        end_date=_parse_end_date(data.get("end_date")),
    )


# ---------------------------------------------------------------------------
# Status lifecycle
# ---------------------------------------------------------------------------

def initial_status(is_draft: bool) -> TaskStatus:
    return TaskStatus.DRAFT if is_draft else TaskStatus.PENDING


def resolve_status(
    task: TaskRecord,
    is_draft: bool | None,
    status: TaskStatus | None,
) -> TaskStatus:
    """
    Status after an update.

    An explicit status always wins. Leaving draft without one forces Pending.
    """
    if status is not None:
        return status
    if task.is_draft and is_draft is False:
        return TaskStatus.PENDING
    return task.status


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

def validate_file_name(file_name: str | None) -> str:
    """A display name, not a path: no separators, no dot-only names."""
    if (
        not file_name
        or len(file_name) > FILE_NAME_MAX_LENGTH
        or file_name.strip() in ("", ".", "..")
        or "/" in file_name
        or "\\" in file_name
    ):
        raise TaskRuleError("invalidFileFormat")
    return file_name


def validate_file_type(file_type: str) -> FileType:
    try:
        return FileType(file_type)
    except ValueError:
        raise TaskRuleError("invalidFileFormat") from None


def validate_file_size(file_size: int) -> int:
    if not _is_int(file_size) or not 0 < file_size <= MAX_FILE_SIZE:
        raise TaskRuleError("fileTooLarge")
    return file_size


def check_attachment_capacity(existing: int) -> None:
    if existing >= MAX_ATTACHMENTS_PER_TASK:
        raise TaskRuleError("tooManyAttachments")


# ---------------------------------------------------------------------------
# List assembly
# ---------------------------------------------------------------------------

_CLOSED_STATUSES = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


def is_due_soon(task: TaskRecord, today: date) -> bool:
    if task.due_date is None or task.status in _CLOSED_STATUSES:
        return False
    return today <= task.due_date <= today + timedelta(days=1)


def _list_sort_key(summary: TaskSummary) -> tuple:
    task = summary.task
    return (
        not task.is_draft,
        -int(task.priority),
        task.due_date is None,
        task.due_date or date.max,
        -task.created_at.timestamp(),
    )


def sort_summaries(summaries: list[TaskSummary]) -> list[TaskSummary]:
    """Drafts first, then priority desc, due date asc (nulls last), newest first."""
    return sorted(summaries, key=_list_sort_key)
