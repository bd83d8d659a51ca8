"""Pull reasoning out of ``thought`` tool results for display."""

import secrets
import time
from collections.abc import Sequence
from typing import Any

from vault_agent.agent_types import ReasoningData, ReasoningStep, ToolExecutionResult, ToolInvocation, utcnow_iso


def _reasoning_id() -> str:
    return f"reasoning-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class ReasoningProcessor:
    """Convert tool outcomes into timestamped records plus optional reasoning."""

    def __init__(self, collapse_reasoning: bool = False):
        self.collapse_reasoning = collapse_reasoning

    def process(
        self,
        tool_results: Sequence[ToolInvocation],
    ) -> tuple[ReasoningData | None, list[ToolExecutionResult]]:
        records = [ToolExecutionResult.from_invocation(item) for item in tool_results]
        reasoning = None
        # Only the first successful thought is surfaced.
        for command, result in tool_results:
            if command.action == "thought" and result.success and result.data:
                reasoning = self.to_reasoning(result.data)
                break
        return reasoning, records

    def to_reasoning(self, data: Any) -> ReasoningData:
        if not isinstance(data, dict):
            data = {"thought": str(data)}
        base = {
            "id": _reasoning_id(),
            "timestamp": data.get("timestamp") or utcnow_iso(),
            "is_collapsed": self.collapse_reasoning,
        }
        steps = data.get("steps")
        if data.get("reasoning") == "structured" and isinstance(steps, list):
            return ReasoningData(
                **base,
                type="structured",
                problem=data.get("problem"),
                steps=[
                    ReasoningStep(step=s.get("step"), title=s.get("title"), content=s.get("content"))
                    for s in steps
                    if isinstance(s, dict)
                ],
                depth=data.get("depth"),
            )
        return ReasoningData(
            **base,
            type="simple",
            summary=data.get("thought") or data.get("formatted_thought"),
        )
