"""Text renderings of tool results for the model, the transcript and copying."""

from collections.abc import Sequence
from typing import Any, Literal

from vault_agent.agent_types import ToolInvocation
from vault_agent.llm import Message
from vault_agent.tools.registry import ToolCommand, ToolResult, canonical_json

FormatStyle = Literal["plain", "markdown", "copy"]

_STATUS_ICONS: dict[str, tuple[str, str]] = {
    "markdown": ("✅", "❌"),
    "copy": ("SUCCESS", "ERROR"),
    "plain": ("✓", "✗"),
}

_TOOL_ICONS = {
    "file_read": "📖",
    "file_write": "✍️",
    "file_list": "📁",
    "file_search": "🔍",
    "file_move": "📦",
    "file_delete": "🗑️",
    "thought": "💭",
}


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return canonical_json(value)


class ToolResultFormatter:
    """Format ``(command, result)`` pairs in the plain, markdown or copy style."""

    @staticmethod
    def status_icon(success: bool, style: FormatStyle) -> str:
        ok, failed = _STATUS_ICONS.get(style, _STATUS_ICONS["plain"])
        return ok if success else failed

    def format(self, command: ToolCommand, result: ToolResult, style: FormatStyle = "plain") -> str:
        status = self.status_icon(result.success, style)
        if style == "markdown":
            action = command.action.replace("_", " ")
            if not result.success:
                return f"{status} **{action}** failed: {result.error}"
            return f"{status} **{action}** completed successfully{self.result_context(command, result)}"
        if style == "copy":
            body = _stringify(result.data) if result.success else result.error
            return (
                f"TOOL EXECUTION: {command.action}\nSTATUS: {status}\n"
                f"PARAMETERS:\n{_stringify(command.parameters)}\nRESULT:\n{body}"
            )
        body = _stringify(result.data) if result.success else result.error
        return f"{status} Tool: {command.action}\nParameters: {_stringify(command.parameters)}\nResult: {body}"

    @staticmethod
    def result_context(command: ToolCommand, result: ToolResult) -> str:
        """Short suffix naming what a successful tool touched."""
        data = result.data if isinstance(result.data, dict) else {}
        if command.action in {"file_read", "file_write"} and data.get("file_path"):
            return f" [[{data['file_path']}]]"
        if command.action in {"file_search", "file_list"} and data.get("count") is not None:
            return f" ({data['count']} found)"
        if command.action == "file_move" and data.get("destination_path"):
            return f" → [[{data['destination_path']}]]"
        if command.action == "thought" and data.get("formatted_thought"):
            return f"\n{data['formatted_thought']}"
        return ""

    def create_tool_result_message(self, tool_results: Sequence[ToolInvocation]) -> Message | None:
        """System message handing tool results back to the model."""
        if not tool_results:
            return None
        text = "\n\n".join(self.format(command, result, "plain") for command, result in tool_results)
        return Message(role="system", content=f"Tool execution results:\n\n{text}")

    def to_markdown(self, command: ToolCommand, result: ToolResult) -> str:
        """Standalone markdown block for one tool outcome."""
        icon = _TOOL_ICONS.get(command.action, "🔧")
        status = self.status_icon(result.success, "markdown")
        lines = [f"### {icon} {command.action} {status}"]
        if command.parameters:
            lines.append("")
            lines.append("**Parameters:**")
            lines.extend(f"- **{key}:** `{_stringify(value)}`" for key, value in command.parameters.items())
        lines.append("")
        if result.success:
            lines.append("**Result:**")
            lines.append("```json")
            lines.append(canonical_json(result.data) if not isinstance(result.data, str) else result.data)
            lines.append("```")
        else:
            lines.append(f"**Error:** {result.error}")
        return "\n".join(lines)
