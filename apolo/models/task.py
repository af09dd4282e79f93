from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime
from typing import List, Optional
from uuid import uuid4


class TaskRecord(SQLModel, table=True):
    """Flat remote row for a task.

    The tree is rebuilt client side from ``parent_id``. Activity, attachments
    and tags are stored whole as JSON, so edits to them rewrite the field.
    """
    __tablename__ = "tasks"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id", ondelete="CASCADE")
    parent_id: Optional[str] = Field(default=None, index=True)
    title: str
    description: Optional[str] = None
    status: str = Field(default="pending")
    position: Optional[float] = None
    expanded: Optional[bool] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    attachments: Optional[List[dict]] = Field(default=None, sa_column=Column(JSON))
    activity: Optional[List[dict]] = Field(default=None, sa_column=Column(JSON))
    tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
