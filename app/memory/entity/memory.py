from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Project(BaseModel):
    project_id: str
    user_id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class Memory(BaseModel):
    """A project-scoped memory, or a general one when ``project_id`` is None."""
    memory_id: str
    user_id: str
    project_id: Optional[str] = None
    title: str
    content: str
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    importance: int = Field(default=5, ge=1, le=10)
    created_at: Optional[datetime] = None
