import asyncio

import pytest

from vault_agent.agent_types import ToolExecutionResult
from vault_agent.command_parser import CommandParser
from vault_agent.config import AgentConfig
from vault_agent.exceptions import OperationAbortedError
from vault_agent.response_handler import AgentResponseHandler, ToolDisplay
from vault_agent.tools.registry import Tool, ToolCommand, ToolRegistry, ToolResult
from vault_agent.tools.thought import ThoughtTool


class RecordingTool(Tool):
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string"}},
        "required": [],
    }

    def __init__(self, name: str, log: list[str]):
        self.name = name
        self.description = f"Recording {name}"
        self.log = log

    async def execute(self, **kwargs):
        self.log.append(f"{self.name}:{kwargs.get('path')}")
        return ToolResult(success=True, data={"file_path": kwargs.get("path")})


class SlowTool(Tool):
    name = "slow"
    description = "Never finishes in time"
    parameters = {"type": "object", "properties": {}, "required": []}

    async def execute(self, **kwargs):
        await asyncio.sleep(5)
        return ToolResult(success=True, data="late")


class RecordingSink:
    def __init__(self):
        self.results: list[tuple[ToolResult, ToolCommand]] = []
        self.displays: list[ToolDisplay] = []

    def on_tool_result(self, result, command):
        self.results.append((result, command))

    def on_tool_display(self, display):
        self.displays.append(display)


class FailingSink:
    def on_tool_result(self, result, command):
        raise RuntimeError("ui went away")

    def on_tool_display(self, display):
        raise RuntimeError("ui went away")


def make_handler(max_tool_calls: int = 10, timeout_ms: int = 30000, sink=None):
    calls: list[str] = []
    registry = ToolRegistry()
    for name in ("file_write", "file_read", "file_list"):
        registry.register(RecordingTool(name, calls))
    registry.register(SlowTool())
    registry.register(ThoughtTool())
    config = AgentConfig(max_tool_calls=max_tool_calls, timeout_ms=timeout_ms)
    return AgentResponseHandler(config, registry, event_sink=sink), calls


SCENARIO_TEXT = 'do X [[tool:file_write {"path":"a.md"} #req1]]'


@pytest.mark.asyncio
async def test_single_command_executes_once():
    handler, calls = make_handler()

    turn = await handler.process_turn(SCENARIO_TEXT, history=[])

    assert turn.has_tools is True
    assert turn.prose == "do X"
    assert len(turn.tool_results) == 1
    command, result = turn.tool_results[0]
    assert command.request_id == "req1"
    assert result.success is True
    assert result.request_id == "req1"
    assert calls == ["file_write:a.md"]
    assert handler.execution_count == 1


@pytest.mark.asyncio
async def test_recorded_command_returns_cached_result_without_executing():
    handler, calls = make_handler()
    cached = ToolResult(success=True, data={"file_path": "a.md", "cached": True}, request_id="req1")
    history = [
        {
            "role": "assistant",
            "content": "earlier",
            "tool_results": [
                ToolExecutionResult(
                    command=ToolCommand(action="file_write", parameters={"path": "a.md"}, request_id="req1"),
                    result=cached,
                )
            ],
        }
    ]

    turn = await handler.process_turn(SCENARIO_TEXT, history=history)

    assert calls == []
    assert handler.execution_count == 0
    assert turn.has_tools is True
    assert turn.tool_results[0].result is cached


@pytest.mark.asyncio
async def test_limit_reached_rejects_later_turns_until_increased():
    handler, calls = make_handler(max_tool_calls=2)

    first = await handler.process_turn(
        '[[tool:file_read {"path": "a.md"} #1]] [[tool:file_read {"path": "b.md"} #2]]'
    )
    assert len(first.tool_results) == 2
    assert handler.execution_count == 2
    assert handler.create_task_status().status == "limit_reached"

    rejected = await handler.process_turn('Next [[tool:file_read {"path": "c.md"} #3]]')
    assert rejected.tool_results == []
    assert rejected.has_tools is True
    assert rejected.prose == "Next\n\n*2 [Tool execution limit reached]*"
    assert calls == ["file_read:a.md", "file_read:b.md"]

    handler.add_tool_executions(1)
    accepted = await handler.process_turn('Next [[tool:file_read {"path": "c.md"} #3]]')
    assert len(accepted.tool_results) == 1
    assert handler.execution_count == 3
    assert handler.effective_limit == 3

    handler.reset_execution_count()
    assert handler.execution_count == 0
    assert handler.effective_limit == 2


@pytest.mark.asyncio
async def test_limit_mid_turn_drops_remaining_commands():
    handler, calls = make_handler(max_tool_calls=1)

    turn = await handler.process_turn(
        '[[tool:file_read {"path": "a.md"} #1]] [[tool:file_read {"path": "b.md"} #2]]'
    )

    assert [c.request_id for c, _ in turn.tool_results] == ["1"]
    assert calls == ["file_read:a.md"]
    assert handler.is_limit_reached() is True


@pytest.mark.asyncio
async def test_timeout_becomes_failed_result():
    handler, _ = make_handler(timeout_ms=50)

    turn = await handler.process_turn("[[tool:slow #s1]] [[tool:file_list #l1]]")

    slow_result = turn.tool_results[0].result
    assert slow_result.success is False
    assert "timed out" in slow_result.error
    assert turn.tool_results[1].result.success is True
    assert handler.execution_count == 2


@pytest.mark.asyncio
async def test_parser_follows_registry_changes():
    handler, calls = make_handler()
    handler.registry.unregister("file_list")

    removed = await handler.process_turn("[[tool:file_list #gone]]")

    assert removed.has_tools is False
    assert removed.prose == "[[tool:file_list #gone]]"

    handler.registry.register(RecordingTool("file_search", calls))
    added = await handler.process_turn('[[tool:file_search {"path": "notes"} #s]]')

    assert [c.action for c, _ in added.tool_results] == ["file_search"]
    assert calls == ["file_search:notes"]


@pytest.mark.asyncio
async def test_policy_change_hides_actions_from_parser():
    handler, calls = make_handler()
    handler.registry.set_policy({"deny": ["file_write"]})

    turn = await handler.process_turn(SCENARIO_TEXT)

    assert turn.tool_results == []
    assert calls == []


@pytest.mark.asyncio
async def test_explicit_parser_keeps_its_own_actions():
    handler, _ = make_handler()
    handler = AgentResponseHandler(handler.config, handler.registry, parser=CommandParser(["file_list"]))
    handler.registry.unregister("file_list")

    turn = await handler.process_turn("[[tool:file_list #gone]]")

    assert turn.tool_results[0].result.success is False
    assert "Tool not found" in turn.tool_results[0].result.error


@pytest.mark.asyncio
async def test_commands_execute_in_textual_order_with_cached_interleaved():
    handler, calls = make_handler()
    history = [
        {
            "role": "assistant",
            "tool_results": [
                ToolExecutionResult(
                    command=ToolCommand(action="file_read", parameters={"path": "b.md"}, request_id="2"),
                    result=ToolResult(success=True, data="cached-b"),
                ).model_dump(mode="json")
            ],
        }
    ]

    turn = await handler.process_turn(
        '[[tool:file_write {"path": "a.md"} #1]]\n'
        '{"action": "file_read", "parameters": {"path": "b.md"}, "requestId": "2"}\n'
        '[[tool:file_list {"path": "c"} #3]]',
        history=history,
    )

    assert [c.request_id for c, _ in turn.tool_results] == ["1", "2", "3"]
    assert turn.tool_results[1].result.data == "cached-b"
    assert calls == ["file_write:a.md", "file_list:c"]
    assert handler.execution_count == 2


@pytest.mark.asyncio
async def test_disabled_agent_mode_skips_parsing():
    handler, calls = make_handler()
    handler.set_agent_mode_enabled(False)

    turn = await handler.process_turn(SCENARIO_TEXT)

    assert turn.prose == SCENARIO_TEXT
    assert turn.tool_results == []
    assert turn.has_tools is False
    assert calls == []
    assert handler.config.enabled is False


@pytest.mark.asyncio
async def test_no_commands_is_completed():
    handler, _ = make_handler()

    outcome = await handler.process_turn_with_status("Just chatting.")

    assert outcome.has_tools is False
    assert outcome.task_status.status == "completed"
    assert outcome.task_status.can_continue is False


@pytest.mark.asyncio
async def test_abort_before_next_command_raises():
    handler, calls = make_handler()
    abort_event = asyncio.Event()
    abort_event.set()

    with pytest.raises(OperationAbortedError):
        await handler.process_turn(SCENARIO_TEXT, abort_event=abort_event)
    assert calls == []
    assert handler.execution_count == 0


@pytest.mark.asyncio
async def test_event_sink_receives_results_and_displays():
    sink = RecordingSink()
    handler, _ = make_handler(sink=sink)

    await handler.process_turn(SCENARIO_TEXT)

    assert [command.request_id for _, command in sink.results] == ["req1"]
    assert [display.display_id for display in sink.displays] == ["file_write-req1"]
    assert handler.get_tool_markdown("file_write-req1").startswith("### ✍️ file_write ✅")
    assert "file_write-req1" in handler.get_tool_displays()
    assert handler.get_combined_tool_markdown() == sink.displays[0].markdown

    handler.clear_tool_displays()
    assert handler.get_tool_displays() == {}


@pytest.mark.asyncio
async def test_failing_sink_does_not_break_turn():
    handler, calls = make_handler(sink=FailingSink())

    turn = await handler.process_turn(SCENARIO_TEXT)

    assert turn.tool_results[0].result.success is True
    assert calls == ["file_write:a.md"]


@pytest.mark.asyncio
async def test_rerun_bypasses_dedup_and_budget():
    handler, calls = make_handler(max_tool_calls=1)
    turn = await handler.process_turn(SCENARIO_TEXT)
    command = turn.tool_results[0].command

    record = await handler.rerun_tool(command)

    assert isinstance(record, ToolExecutionResult)
    assert record.command.identity_key() == command.identity_key()
    assert calls == ["file_write:a.md", "file_write:a.md"]
    assert handler.execution_count == 1


@pytest.mark.asyncio
async def test_status_outcome_extracts_reasoning_and_records():
    handler, _ = make_handler()

    outcome = await handler.process_turn_with_status(
        '{"thought": "Read the note first", "next_tool": "file_read"} '
        '[[tool:file_read {"path": "a.md"} #r]]'
    )

    assert outcome.task_status.status == "running"
    assert outcome.task_status.tool_execution_count == 2
    assert outcome.task_status.max_tool_executions == 10
    assert outcome.reasoning.type == "simple"
    assert outcome.reasoning.summary == "Read the note first"
    assert [r.command.action for r in outcome.tool_execution_results] == ["thought", "file_read"]
    assert outcome.should_show_limit_warning is False


@pytest.mark.asyncio
async def test_history_message_feeds_deduplication():
    handler, calls = make_handler()
    outcome = await handler.process_turn_with_status(SCENARIO_TEXT)
    history = [outcome.to_history_message()]

    again = await handler.process_turn(SCENARIO_TEXT, history=history)

    assert calls == ["file_write:a.md"]
    assert again.tool_results[0].result == outcome.tool_results[0].result
    assert handler.execution_count == 1


def test_task_status_derivation_and_stats():
    handler, _ = make_handler(max_tool_calls=3)

    assert handler.create_task_status(has_tools=False).status == "completed"
    assert handler.create_task_status().status == "running"
    stopped = handler.create_task_status(status="stopped")
    assert stopped.can_continue is True
    assert handler.get_execution_stats() == {"count": 0, "limit": 3, "remaining": 3}

    with pytest.raises(ValueError):
        handler.add_tool_executions(0)


@pytest.mark.asyncio
async def test_execution_count_never_exceeds_limit():
    handler, calls = make_handler(max_tool_calls=3)
    counts = []
    for idx in range(6):
        await handler.process_turn(f'[[tool:file_read {{"path": "{idx}.md"}} #{idx}]]')
        counts.append(handler.execution_count)

    assert counts == sorted(counts)
    assert handler.execution_count == 3
    assert len(calls) == 3


def test_tool_result_message_uses_plain_format():
    handler, _ = make_handler()
    command = ToolCommand(action="file_write", parameters={"path": "a.md"}, request_id="r")

    message = handler.create_tool_result_message([(command, ToolResult(success=False, error="disk full"))])

    assert message.role == "system"
    assert message.content == (
        'Tool execution results:\n\n✗ Tool: file_write\nParameters: {"path":"a.md"}\nResult: disk full'
    )
    assert handler.create_tool_result_message([]) is None
