"""Goal decomposition strategies."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from .config import TaskplaneConfig, load_config
from .contracts import RoutingError, TaskDescriptor, TaskKind

logger = logging.getLogger(__name__)


class Router(Protocol):
    """Maps a goal onto an ordered sequence of task descriptors."""

    async def route(self, goal: str, context: Dict[str, Any]) -> List[TaskDescriptor]:
        """Decompose ``goal``. Raises ``RoutingError`` when it cannot."""


@dataclass(frozen=True)
class KeywordRule:
    """Emit one task when ``keyword`` occurs in the goal (case-insensitive)."""

    keyword: str
    name: str
    kind: TaskKind = TaskKind.TOOL_CALL
    input_key: str = "query"

    def matches(self, goal: str) -> bool:
        return self.keyword.lower() in goal.lower()

    def build(self, goal: str) -> TaskDescriptor:
        return TaskDescriptor(kind=self.kind, name=self.name, input={self.input_key: goal})


DEFAULT_RULES = (KeywordRule(keyword="search", name="search_web"),)
FALLBACK_RULE = KeywordRule(
    keyword="", name="analyze_request", kind=TaskKind.REASONING, input_key="goal"
)


class KeywordRouter:
    """Deterministic router driven by an ordered list of keyword rules.

    Every matching rule contributes one task. When nothing matches, the
    fallback rule produces a single reasoning task so that routing always
    yields at least one task.
    """

    def __init__(
        self,
        rules: Sequence[KeywordRule] = DEFAULT_RULES,
        fallback: Optional[KeywordRule] = FALLBACK_RULE,
    ) -> None:
        self.rules = list(rules)
        self.fallback = fallback

    async def route(self, goal: str, context: Dict[str, Any]) -> List[TaskDescriptor]:
        tasks = [rule.build(goal) for rule in self.rules if rule.matches(goal)]
        if not tasks and self.fallback is not None:
            tasks.append(self.fallback.build(goal))
        return tasks


class RoutingPlan(BaseModel):
    """Structured output expected from a routing agent."""

    tasks: List[TaskDescriptor] = Field(default_factory=list)


ROUTING_INSTRUCTIONS = (
    "You decompose a user goal into an ordered list of tasks for a workflow "
    "engine. Each task names one tool and the JSON input to call it with. "
    "Only use the available tools. Return at least one task."
)


class AgentRouter:
    """Router backed by a pydantic-ai agent with a ``RoutingPlan`` output."""

    def __init__(self, agent: Any, tool_names: Sequence[str] = ()) -> None:
        self._agent = agent
        self._tool_names = list(tool_names)

    @classmethod
    def from_model(cls, model: str, tool_names: Sequence[str] = ()) -> "AgentRouter":
        agent = Agent(model, output_type=RoutingPlan, system_prompt=ROUTING_INSTRUCTIONS)
        return cls(agent, tool_names)

    def _prompt(self, goal: str, context: Dict[str, Any]) -> str:
        lines = [f"Goal: {goal}"]
        if context:
            lines.append(f"Context: {json.dumps(context, default=str)}")
        if self._tool_names:
            lines.append(f"Available tools: {', '.join(self._tool_names)}")
        return "\n".join(lines)

    async def route(self, goal: str, context: Dict[str, Any]) -> List[TaskDescriptor]:
        try:
            result = await self._agent.run(self._prompt(goal, context))
        except Exception as e:
            raise RoutingError(f"Routing agent failed: {e}") from e

        plan = result.output
        if not isinstance(plan, RoutingPlan):
            plan = RoutingPlan.model_validate(plan)
        unknown = [t.name for t in plan.tasks if self._tool_names and t.name not in self._tool_names]
        if unknown:
            raise RoutingError(f"Routing agent proposed unknown tools: {', '.join(unknown)}")
        logger.info(f"Routing agent planned {len(plan.tasks)} task(s) for goal={goal!r}")
        return plan.tasks


def get_router(
    config: Optional[TaskplaneConfig] = None, tool_names: Sequence[str] = ()
) -> Router:
    """Factory function to get the configured router."""

    config = config or load_config()
    backend = config.router.backend
    if backend == "keyword":
        return KeywordRouter()
    elif backend == "agent":
        if not config.router.model:
            raise ValueError("router.model is required for the agent router")
        return AgentRouter.from_model(config.router.model, tool_names)
    else:
        raise ValueError(f"Unsupported router backend: {backend}")
