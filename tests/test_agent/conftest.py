import asyncio
from collections.abc import Sequence

import pytest

from vault_agent.config import AgentConfig
from vault_agent.llm import CompletionProvider, Message
from vault_agent.response_handler import AgentResponseHandler
from vault_agent.tools.registry import Tool, ToolRegistry, ToolResult
from vault_agent.tools.thought import ThoughtTool


class ScriptedProvider(CompletionProvider):
    """Replays canned replies and records every prompt it was sent."""

    def __init__(self, replies: Sequence[str | Exception]):
        self.replies = list(replies)
        self.prompts: list[list[Message]] = []
        self.closed = False

    async def get_completion(
        self,
        messages,
        *,
        temperature=None,
        max_tokens=None,
        stream_callback=None,
        abort_event: asyncio.Event | None = None,
    ) -> str:
        self.prompts.append(list(messages))
        if not self.replies:
            return ""
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if stream_callback is not None:
            stream_callback(reply)
        return reply

    async def close(self) -> None:
        self.closed = True


class NoteTool(Tool):
    name = "file_read"
    description = "Read a note"
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string"}},
        "required": ["path"],
    }

    def __init__(self, calls: list[str]):
        self.calls = calls

    async def execute(self, path: str, **kwargs):
        self.calls.append(path)
        return ToolResult(success=True, data={"path": path, "content": f"body of {path}"})


@pytest.fixture
def tool_calls() -> list[str]:
    return []


@pytest.fixture
def note_registry(tool_calls) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(NoteTool(tool_calls))
    registry.register(ThoughtTool())
    return registry


@pytest.fixture
def make_note_handler(note_registry):
    def _make(**overrides) -> AgentResponseHandler:
        return AgentResponseHandler(AgentConfig(**overrides), note_registry)

    return _make


@pytest.fixture
def scripted():
    return ScriptedProvider
