from .task import ActivityLog, ActivityType, Attachment, AttachmentType, Task, TaskStatus
from .project import AppState, Project
from .user import Notification, User

__all__ = [
    "ActivityLog",
    "ActivityType",
    "AppState",
    "Attachment",
    "AttachmentType",
    "Notification",
    "Project",
    "Task",
    "TaskStatus",
    "User",
]
