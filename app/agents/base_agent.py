from typing import TypeVar, Generic, Optional, Type, List, Dict, Union
import inspect
from contextlib import asynccontextmanager
from enum import Enum

from pydantic_ai import Agent, Tool
from pydantic_ai.messages import ModelMessage
from pydantic_ai.models import Model

from app.core.logger import get_logger

logger = get_logger(__name__)

DepsT = TypeVar("DepsT")
ResultT = TypeVar("ResultT")


class LLMModel(str, Enum):
    """Model ids accepted from the client."""
    # Groq models (free tier)
    GROQ_LLAMA_70B = "llama-3.3-70b-versatile"
    GROQ_LLAMA_8B = "llama-3.1-8b-instant"

    # OpenAI models
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4O = "gpt-4o"
    GPT_4_TURBO = "gpt-4-turbo"

    # Other models
    CLAUDE_3_5_SONNET = "claude-3-5-sonnet-latest"


# Client model id -> pydantic-ai model name; providers read their API keys on first use
DEFAULT_MODEL_MAP: Dict[str, Union[str, Model]] = {
    LLMModel.GROQ_LLAMA_70B.value: "groq:llama-3.3-70b-versatile",
    LLMModel.GROQ_LLAMA_8B.value: "groq:llama-3.1-8b-instant",
    LLMModel.GPT_4O_MINI.value: "openai:gpt-4o-mini",
    LLMModel.GPT_4O.value: "openai:gpt-4o",
    LLMModel.GPT_4_TURBO.value: "openai:gpt-4-turbo",
    LLMModel.CLAUDE_3_5_SONNET.value: "anthropic:claude-3-5-sonnet-latest",
}


class BaseAgent(Generic[DepsT, ResultT]):
    """
    Thin wrapper over a pydantic-ai ``Agent``.

    Subclasses mark methods with ``@tool`` or ``@instructions``; they are
    collected here and registered on the underlying agent. The model is chosen
    per run, so no provider is contacted at construction time.
    """

    def __init__(self,
            *,
            output_type: Optional[Type] = str,
            deps_type: Optional[Type] = None,
            retries: int = 2,
            instructions: Optional[str] = None,
            **agent_kwargs
    ):
        self.output_type = output_type

        # Collect tool methods using inspection
        tool_funcs = [
            Tool(member, name=getattr(member, "_tool_name", None) or name)
            for name, member in inspect.getmembers(self, inspect.ismethod)
            if getattr(member, "_is_tool", False)
        ]
        self.tool_names: List[str] = [t.name for t in tool_funcs]
        logger.info(f"{type(self).__name__} registered tools: {', '.join(self.tool_names) or 'none'}")

        self.agent = Agent(
            instructions=instructions,
            output_type=output_type,
            deps_type=deps_type,
            tools=tool_funcs,
            retries=retries,
            **agent_kwargs,
        )

        # Register dynamic instructions functions
        for name, member in inspect.getmembers(self, inspect.ismethod):
            if getattr(member, "_is_instructions", False):
                self.agent.instructions(member)

    @asynccontextmanager
    async def iter(self, model: Union[str, Model], prompt: Optional[str], *, deps: Optional[DepsT] = None,
            message_history: Optional[List[ModelMessage]] = None, **kwargs):
        """
        Get an async context manager for iterating over the agent's graph execution.
        """
        agent_run_params = {
            "deps": deps,
            "model": model,
            **kwargs
        }

        if message_history:
            agent_run_params["message_history"] = message_history

        async with self.agent.iter(prompt, **agent_run_params) as agent_run:
            yield agent_run


# Decorators for marking methods in derived classes
def tool(name: Optional[str] = None):
    def decorator(func):
        func._is_tool = True
        func._tool_name = name
        return func
    return decorator


def instructions(func):
    func._is_instructions = True
    return func
