from .project import ProjectRecord, ProjectMember
from .task import TaskRecord
from .profile import Profile
from .notification import Notification

# Export all models for easy importing
__all__ = ["ProjectRecord", "ProjectMember", "TaskRecord", "Profile", "Notification"]
