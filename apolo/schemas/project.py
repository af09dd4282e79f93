from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .task import Task


class Project(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    subtitle: Optional[str] = None
    color: Optional[str] = None
    image_url: Optional[str] = None
    position: Optional[float] = None
    created_by: Optional[str] = None
    created_at: Optional[int] = None
    tasks: List[Task] = Field(default_factory=list)


class AppState(BaseModel):
    """Every project loaded for the current identity, each with its forest."""
    model_config = ConfigDict(frozen=True)

    projects: List[Project] = Field(default_factory=list)
