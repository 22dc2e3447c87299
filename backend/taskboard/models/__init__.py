from taskboard.models.task import Task, Subtask
from taskboard.models.attachment import TaskAttachment

__all__ = ["Task", "Subtask", "TaskAttachment"]
