from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic_ai import RunContext

from app.agents.base_agent import BaseAgent, instructions, tool
from app.core.config import settings
from app.core.logger import get_logger
from app.memory.entity.memory import Memory, Project
from app.memory.repository.memory_repository import IMemoryRepository

logger = get_logger("CoreframeAgent")


@dataclass(frozen=True)
class ToolContext:
    """Read-only request context handed to every tool call."""
    user_id: str
    chat_id: str
    project_id: Optional[str] = None


def _memory_view(m: Memory) -> Dict[str, Any]:
    return {
        "id": m.memory_id,
        "title": m.title,
        "content": m.content,
        "summary": m.summary,
        "tags": m.tags,
        "importance": m.importance,
        "createdAt": m.created_at.isoformat() if m.created_at else None,
    }


def _clamp_importance(importance: int) -> int:
    return max(1, min(10, importance))


class CoreframeAgent(BaseAgent[ToolContext, str]):
    """
    Chat agent with project and general memory tools.

    Tools answer with ``{"success": bool, ...}`` so the model can report a
    missing project or foreign project without the run failing.
    """

    def __init__(self, memory_repository: IMemoryRepository):
        self.memory_repository = memory_repository
        super().__init__(
            deps_type=ToolContext,
            output_type=str,
            retries=settings.AGENT_MAX_RETRIES,
        )

    @instructions
    def current_datetime_context(self) -> str:
        """Short datetime context, re-evaluated on every run."""
        now = datetime.now(timezone.utc)
        return f"Now: {now.strftime('%Y-%m-%d %H:%M UTC')}"

    async def _owned_project(self, ctx: RunContext[ToolContext]) -> tuple[Optional[Project], Optional[Dict[str, Any]]]:
        if not ctx.deps.project_id:
            return None, {"success": False, "message": "This chat is not part of a project."}
        project = await self.memory_repository.get_project(ctx.deps.project_id)
        if project is None or project.user_id != ctx.deps.user_id:
            logger.warning(f"User {ctx.deps.user_id} has no access to project {ctx.deps.project_id}")
            return None, {"success": False, "message": "Project not found or access denied."}
        return project, None

    @tool(name="getCurrentProjectContext")
    async def get_current_project_context(self, ctx: RunContext[ToolContext]) -> Dict[str, Any]:
        """Get the current project and its saved memories."""
        project, failure = await self._owned_project(ctx)
        if failure:
            return failure
        memories = await self.memory_repository.list_project_memories(project.project_id)
        return {
            "success": True,
            "project": {
                "id": project.project_id,
                "name": project.name,
                "description": project.description,
            },
            "memories": [_memory_view(m) for m in memories],
        }

    @tool(name="createMemory")
    async def create_memory(
        self,
        ctx: RunContext[ToolContext],
        title: str,
        content: str,
        summary: Optional[str] = None,
        tags: Optional[List[str]] = None,
        importance: int = 5,
    ) -> Dict[str, Any]:
        """Save a memory in the current project.

        Args:
            title: Short title for the memory.
            content: The information to remember.
            summary: Optional one-line summary.
            tags: Optional keywords.
            importance: 1 (trivia) to 10 (critical).
        """
        project, failure = await self._owned_project(ctx)
        if failure:
            return failure
        memory = await self.memory_repository.create_project_memory(
            project_id=project.project_id,
            user_id=ctx.deps.user_id,
            title=title,
            content=content,
            summary=summary,
            tags=tags,
            importance=_clamp_importance(importance),
        )
        return {"success": True, "memory": _memory_view(memory)}

    @tool(name="getMemories")
    async def get_memories(self, ctx: RunContext[ToolContext], limit: int = 10) -> Dict[str, Any]:
        """List the memories of the current project, most important first.

        Args:
            limit: Maximum number of memories to return.
        """
        project, failure = await self._owned_project(ctx)
        if failure:
            return failure
        memories = await self.memory_repository.list_project_memories(project.project_id, limit=limit)
        return {"success": True, "memories": [_memory_view(m) for m in memories]}

    @tool(name="createGeneralMemory")
    async def create_general_memory(
        self,
        ctx: RunContext[ToolContext],
        title: str,
        content: str,
        summary: Optional[str] = None,
        tags: Optional[List[str]] = None,
        importance: int = 5,
    ) -> Dict[str, Any]:
        """Save a memory about the user that is not tied to a project.

        Args:
            title: Short title for the memory.
            content: The information to remember.
            summary: Optional one-line summary.
            tags: Optional keywords.
            importance: 1 (trivia) to 10 (critical).
        """
        memory = await self.memory_repository.create_general_memory(
            user_id=ctx.deps.user_id,
            title=title,
            content=content,
            summary=summary,
            tags=tags,
            importance=_clamp_importance(importance),
        )
        return {"success": True, "memory": _memory_view(memory)}

    @tool(name="getGeneralMemories")
    async def get_general_memories(self, ctx: RunContext[ToolContext], limit: int = 10) -> Dict[str, Any]:
        """List the user's general memories, most important first.

        Args:
            limit: Maximum number of memories to return.
        """
        memories = await self.memory_repository.list_general_memories(ctx.deps.user_id, limit=limit)
        return {"success": True, "memories": [_memory_view(m) for m in memories]}
