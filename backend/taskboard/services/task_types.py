"""Plain domain records shared by the rules, the services and the repositories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum


class TaskPriority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class TaskStatus(IntEnum):
    DRAFT = 0
    PENDING = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    CANCELLED = 4


class SubtaskStatus(IntEnum):
    PENDING = 0
    COMPLETED = 1


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class FileType(str, Enum):
    PDF = "pdf"
    DOC = "doc"
    DOCX = "docx"
    JPG = "jpg"
    PNG = "png"


@dataclass(frozen=True, slots=True)
class RecurrenceConfig:
    type: RecurrenceType
    interval: int
    end_date: date | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "interval": self.interval,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


@dataclass(slots=True)
class TaskRecord:
    id: str
    account_id: int
    user_id: int
    title: str
    description: str | None
    due_date: date | None
    priority: TaskPriority
    status: TaskStatus
    recurrence_config: RecurrenceConfig | None
    is_draft: bool
    created_at: datetime
    updated_at: datetime
    deleted: bool = False

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_config is not None


@dataclass(slots=True)
class SubtaskRecord:
    id: str
    account_id: int
    task_id: str
    title: str
    description: str | None
    status: SubtaskStatus
    order_index: int
    created_at: datetime
    updated_at: datetime
    deleted: bool = False


@dataclass(slots=True)
class AttachmentRecord:
    id: str
    account_id: int
    task_id: str
    file_name: str
    file_size: int
    file_type: FileType
    storage_url: str
    created_at: datetime


@dataclass(slots=True)
class SubtaskCounts:
    total: int = 0
    completed: int = 0


@dataclass(slots=True)
class TaskSummary:
    """One row of the task list, with the derived flags already computed."""

    task: TaskRecord
    is_due_soon: bool
    counts: SubtaskCounts = field(default_factory=SubtaskCounts)
