from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from typing import Optional
from uuid import uuid4


class ProjectRecord(SQLModel, table=True):
    """Remote row for a project; owned by ``owner_id``."""
    __tablename__ = "projects"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: str = Field(index=True, foreign_key="profiles.id")
    title: str
    subtitle: Optional[str] = None
    color: Optional[str] = None
    image_url: Optional[str] = None
    position: Optional[float] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ProjectMember(SQLModel, table=True):
    """Membership grant: a non-owner user with access to a project."""
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    project_id: str = Field(index=True, foreign_key="projects.id", ondelete="CASCADE")
    user_id: str = Field(index=True, foreign_key="profiles.id")
    role: str = Field(default="editor")
    created_at: datetime = Field(default_factory=datetime.utcnow)
