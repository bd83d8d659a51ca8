"""Data shapes exchanged between the response handler, continuation and history."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from vault_agent.tools.registry import ToolCommand, ToolResult

TaskState = Literal["completed", "running", "limit_reached", "stopped"]
CONTINUABLE_STATES: frozenset[str] = frozenset({"limit_reached", "stopped"})


def utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


class ToolInvocation(NamedTuple):
    """A command paired with the result it produced (executed or cached)."""

    command: ToolCommand
    result: ToolResult


class ToolExecutionResult(BaseModel):
    """Persisted record of one executed command; replayed for deduplication."""

    model_config = ConfigDict(frozen=True)

    command: ToolCommand
    result: ToolResult
    timestamp: str = Field(default_factory=utcnow_iso)

    @classmethod
    def from_invocation(cls, invocation: ToolInvocation) -> "ToolExecutionResult":
        return cls(command=invocation.command, result=invocation.result)


class TaskProgress(BaseModel):
    current: int
    total: int | None = None
    description: str | None = None


class TaskStatus(BaseModel):
    """Derived task state, recomputed from the handler's counters each turn."""

    status: TaskState
    progress: TaskProgress | None = None
    tool_execution_count: int
    max_tool_executions: int
    can_continue: bool
    last_update_time: str = Field(default_factory=utcnow_iso)


class ReasoningStep(BaseModel):
    step: int | None = None
    title: str | None = None
    content: str | None = None


class ReasoningData(BaseModel):
    """Explanation surfaced by the ``thought`` tool for display."""

    id: str
    timestamp: str
    type: Literal["simple", "structured"]
    summary: str | None = None
    problem: str | None = None
    steps: list[ReasoningStep] = Field(default_factory=list)
    depth: int | None = None
    is_collapsed: bool = False


@dataclass
class TurnResult:
    """What one processed model response produced."""

    prose: str
    tool_results: list[ToolInvocation] = field(default_factory=list)
    has_tools: bool = False


@dataclass
class TurnOutcome(TurnResult):
    """Turn result enriched with status and reasoning for the caller's UI."""

    task_status: TaskStatus | None = None
    reasoning: ReasoningData | None = None
    tool_execution_results: list[ToolExecutionResult] = field(default_factory=list)
    should_show_limit_warning: bool = False

    def to_history_message(self, content: str | None = None) -> dict[str, Any]:
        """Assistant history entry carrying the executed tool results."""
        message: dict[str, Any] = {
            "role": "assistant",
            "content": self.prose if content is None else content,
            "tool_results": [item.model_dump(mode="json") for item in self.tool_execution_results],
            "timestamp": utcnow_iso(),
        }
        if self.task_status is not None:
            message["task_status"] = self.task_status.model_dump(mode="json")
        if self.reasoning is not None:
            message["reasoning"] = self.reasoning.model_dump(mode="json")
        return message
