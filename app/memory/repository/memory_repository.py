# app/memory/repository/memory_repository.py

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.future import select

from app.core.logger import get_logger
from app.memory.entity.memory import Memory, Project
from app.memory.repository.sql_schema.memory import GeneralMemoryModel, ProjectMemoryModel, ProjectModel

logger = get_logger(__name__)


class IMemoryRepository(ABC):
    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def create_project_memory(self, project_id: str, user_id: str, title: str, content: str,
                                    summary: Optional[str] = None, tags: Optional[List[str]] = None,
                                    importance: int = 5) -> Memory:
        pass

    @abstractmethod
    async def list_project_memories(self, project_id: str, limit: int = 20) -> List[Memory]:
        pass

    @abstractmethod
    async def create_general_memory(self, user_id: str, title: str, content: str,
                                    summary: Optional[str] = None, tags: Optional[List[str]] = None,
                                    importance: int = 5) -> Memory:
        pass

    @abstractmethod
    async def list_general_memories(self, user_id: str, limit: int = 20) -> List[Memory]:
        pass


def _dump_tags(tags: Optional[List[str]]) -> Optional[str]:
    return json.dumps(tags) if tags else None


def _load_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except ValueError:
        return []
    return [str(t) for t in tags] if isinstance(tags, list) else []


class MemoryRepository(IMemoryRepository):
    """Projects and the memories kept for them, plus per-user general memories."""

    def __init__(self, get_session: Callable):
        self.get_session = get_session
        self.logger = logger

    @staticmethod
    def _project_memory(m: ProjectMemoryModel) -> Memory:
        return Memory(
            memory_id=m.id,
            user_id=m.user_id,
            project_id=m.project_id,
            title=m.title,
            content=m.content,
            summary=m.summary,
            tags=_load_tags(m.tags),
            importance=m.importance,
            created_at=m.created_at,
        )

    @staticmethod
    def _general_memory(m: GeneralMemoryModel) -> Memory:
        return Memory(
            memory_id=m.id,
            user_id=m.user_id,
            title=m.title,
            content=m.content,
            summary=m.summary,
            tags=_load_tags(m.tags),
            importance=m.importance,
            created_at=m.created_at,
        )

    async def get_project(self, project_id: str) -> Optional[Project]:
        async with self.get_session() as session:
            result = await session.execute(select(ProjectModel).where(ProjectModel.id == project_id))
            p = result.scalar_one_or_none()
            if not p:
                return None
            return Project(
                project_id=p.id,
                user_id=p.user_id,
                name=p.name,
                description=p.description,
                created_at=p.created_at,
            )

    async def create_project(self, user_id: str, name: str, description: Optional[str] = None) -> Project:
        async with self.get_session() as session:
            project = ProjectModel(
                user_id=user_id,
                name=name,
                description=description,
                created_at=datetime.now(timezone.utc),
            )
            session.add(project)
            await session.commit()
            self.logger.info(f"Project saved: {project.id}")
            return Project(
                project_id=project.id,
                user_id=project.user_id,
                name=project.name,
                description=project.description,
                created_at=project.created_at,
            )

    async def create_project_memory(self, project_id: str, user_id: str, title: str, content: str,
                                    summary: Optional[str] = None, tags: Optional[List[str]] = None,
                                    importance: int = 5) -> Memory:
        async with self.get_session() as session:
            row = ProjectMemoryModel(
                project_id=project_id,
                user_id=user_id,
                title=title,
                content=content,
                summary=summary,
                tags=_dump_tags(tags),
                importance=importance,
                created_at=datetime.now(timezone.utc),
            )
            session.add(row)
            await session.commit()
            self.logger.info(f"Memory {row.id} saved for project {project_id}")
            return self._project_memory(row)

    async def list_project_memories(self, project_id: str, limit: int = 20) -> List[Memory]:
        """Most important first, then newest."""
        async with self.get_session() as session:
            result = await session.execute(
                select(ProjectMemoryModel)
                .where(ProjectMemoryModel.project_id == project_id)
                .order_by(ProjectMemoryModel.importance.desc(), ProjectMemoryModel.created_at.desc())
                .limit(limit)
            )
            return [self._project_memory(m) for m in result.scalars().all()]

    async def create_general_memory(self, user_id: str, title: str, content: str,
                                    summary: Optional[str] = None, tags: Optional[List[str]] = None,
                                    importance: int = 5) -> Memory:
        async with self.get_session() as session:
            row = GeneralMemoryModel(
                user_id=user_id,
                title=title,
                content=content,
                summary=summary,
                tags=_dump_tags(tags),
                importance=importance,
                created_at=datetime.now(timezone.utc),
            )
            session.add(row)
            await session.commit()
            self.logger.info(f"General memory {row.id} saved for user {user_id}")
            return self._general_memory(row)

    async def list_general_memories(self, user_id: str, limit: int = 20) -> List[Memory]:
        async with self.get_session() as session:
            result = await session.execute(
                select(GeneralMemoryModel)
                .where(GeneralMemoryModel.user_id == user_id)
                .order_by(GeneralMemoryModel.importance.desc(), GeneralMemoryModel.created_at.desc())
                .limit(limit)
            )
            return [self._general_memory(m) for m in result.scalars().all()]
