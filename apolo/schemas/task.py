import enum
import time
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def now_ms() -> int:
    """Wall clock in epoch milliseconds, the unit of every client timestamp."""
    return int(time.time() * 1000)


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"

    @classmethod
    def from_remote(cls, value: Optional[str]) -> "TaskStatus":
        return cls.COMPLETED if (value or "").lower() == "completed" else cls.PENDING

    def to_remote(self) -> str:
        return self.value.lower()

    def toggled(self) -> "TaskStatus":
        return TaskStatus.PENDING if self is TaskStatus.COMPLETED else TaskStatus.COMPLETED


class ActivityType(str, enum.Enum):
    COMMENT = "COMMENT"
    NOTE = "NOTE"
    STATUS_CHANGE = "STATUS_CHANGE"
    SYSTEM = "SYSTEM"


class AttachmentType(str, enum.Enum):
    IMAGE = "IMAGE"
    FILE = "FILE"
    LINK = "LINK"


class ActivityLog(BaseModel):
    """One entry of a task's append-only activity log."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: ActivityType = ActivityType.COMMENT
    content: str
    timestamp: int = Field(default_factory=now_ms)
    created_by: Optional[str] = Field(default=None, validation_alias=AliasChoices("created_by", "createdBy"))

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, value):
        return value.upper() if isinstance(value, str) else value


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    type: AttachmentType = AttachmentType.FILE
    url: str
    created_at: int = Field(default_factory=now_ms, validation_alias=AliasChoices("created_at", "createdAt"))
    created_by: Optional[str] = Field(default=None, validation_alias=AliasChoices("created_by", "createdBy"))

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, value):
        return value.upper() if isinstance(value, str) else value


class Task(BaseModel):
    """A node of a project's task forest.

    Instances are immutable; tree functions in ``apolo.state.tree`` rebuild
    only the nodes on the path to a change and share the rest.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    subtasks: List["Task"] = Field(default_factory=list)
    position: Optional[float] = None
    expanded: bool = True
    attachments: List[Attachment] = Field(default_factory=list)
    activity: List[ActivityLog] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[int] = None
    tags: List[str] = Field(default_factory=list)


Task.model_rebuild()
