"""Thought tool: records a reasoning step and the planned next action."""

from datetime import UTC, datetime
from typing import Any

from vault_agent.tools.registry import Tool, ToolResult

FINISHED_TOOL = "finished"


def render_thought(
    thought: str,
    step_info: str,
    next_tool: str,
    finished: bool,
) -> str:
    """Render a thought as a short status header plus a quoted body."""
    status = "✅" if finished else "🤔"
    prefix = f"{step_info} " if step_info else ""
    header = f"{status} {prefix}{'Complete' if finished else f'→ {next_tool}'}"
    return f"{header}\n> {thought}"


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


class ThoughtTool(Tool):
    """Plan steps and mark completion.

    Setting ``next_tool`` to ``"finished"`` is how the model declares the task
    done; the continuation loop looks for that flag on successful results.
    """

    name = "thought"
    description = (
        "Plan your approach and summarize completion. Use at start (planning) "
        'and end (summary). Set next_tool to "finished" when the task is complete.'
    )
    parameters = {
        "type": "object",
        "properties": {
            "thought": {"type": "string", "description": "The reasoning step or summary to record"},
            "next_tool": {
                "type": "string",
                "description": 'Next tool name or "finished" when the task is complete',
            },
            "next_action_description": {
                "type": "string",
                "description": "Brief description of next step or completion status",
            },
            "step": {"type": "number", "description": "Current step number"},
            "total_steps": {"type": "number", "description": "Total number of planned steps"},
        },
        "required": ["next_tool"],
    }
    timeout_seconds = 5.0

    async def execute(
        self,
        next_tool: str,
        thought: str | None = None,
        next_action_description: str | None = None,
        step: int | None = None,
        total_steps: int | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        # "reasoning" is accepted as an alias for "thought"
        if not (isinstance(thought, str) and thought.strip()):
            thought = kwargs.get("reasoning")
        if not isinstance(thought, str) or not thought.strip():
            return ToolResult(
                success=False,
                error='Parameter "thought" is required and must be a non-empty string.',
            )
        if not isinstance(next_tool, str) or not next_tool.strip():
            return ToolResult(
                success=False,
                error='Parameter "next_tool" is required and must be a non-empty string.',
            )

        thought = thought.strip()
        next_tool = next_tool.strip()
        finished = next_tool.lower() == FINISHED_TOOL
        step = _positive_int(step)
        total_steps = _positive_int(total_steps)
        if step and total_steps:
            step_info = f"Step {step}/{total_steps}"
        elif step:
            step_info = f"Step {step}"
        else:
            step_info = ""

        return ToolResult(
            success=True,
            data={
                "thought": thought,
                "step": step,
                "total_steps": total_steps,
                "timestamp": datetime.now(UTC).isoformat(),
                "next_tool": next_tool,
                "next_action_description": (next_action_description or "").strip() or None,
                "finished": finished,
                "formatted_thought": render_thought(thought, step_info, next_tool, finished),
            },
        )
