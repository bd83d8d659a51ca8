import asyncio

import pytest

from vault_agent.exceptions import LLMAPIError, OperationAbortedError
from vault_agent.llm import Message
from vault_agent.session import InMemoryHistoryStore
from vault_agent.task_continuation import (
    LIMIT_DURING_CONTINUATION_MARKER,
    LIMIT_STOPPED_MARKER,
    MAX_ITERATIONS_MARKER,
    ContinuationState,
    TaskContinuation,
    error_marker,
    is_task_finished,
    requested_next_tool,
)
from vault_agent.tools.registry import ToolCommand, ToolResult
from vault_agent.agent_types import ToolInvocation


FINISH = '{"thought": "All notes summarized", "next_tool": "finished"}'


def _read(path: str, rid: str) -> str:
    return f'[[tool:file_read {{"path": "{path}"}} #{rid}]]'


async def _first_turn(handler, text: str):
    return await handler.process_turn(text, history=[])


@pytest.mark.asyncio
async def test_runs_until_thought_finishes(scripted, make_note_handler, tool_calls):
    handler = make_note_handler(max_tool_calls=10, max_iterations=5)
    provider = scripted([f"Reading b {_read('b.md', '2')}", f"Done. {FINISH}"])
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, f"Start {_read('a.md', '1')}")

    result = await continuation.continue_until_finished(
        [Message("user", "summarize a and b")],
        "Start " + _read("a.md", "1"),
        first.tool_results,
        current_content=first.prose,
    )

    assert result.state == ContinuationState.FINISHED
    assert result.limit_reached_during_continuation is False
    assert result.iterations == 2
    assert result.content == "Start\n\nReading b\n\nDone."
    assert tool_calls == ["a.md", "b.md"]
    assert [c.action for c, _ in result.tool_results] == ["file_read", "file_read", "thought"]


@pytest.mark.asyncio
async def test_continuation_prompt_layout(scripted, make_note_handler):
    handler = make_note_handler(custom_system_message="Answer in French.")
    provider = scripted([FINISH])
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, _read("a.md", "1"))

    await continuation.continue_until_finished(
        [Message("system", "old system"), {"role": "user", "content": "read a"}],
        _read("a.md", "1"),
        first.tool_results,
    )

    prompt = provider.prompts[0]
    assert [m.role for m in prompt] == ["system", "user", "assistant", "system", "system"]
    assert "Answer in French." in prompt[0].content
    assert "old system" not in prompt[0].content
    assert prompt[1].content == "read a"
    assert prompt[2].content == _read("a.md", "1")
    assert prompt[3].content.startswith("Tool execution results:\n\n✓ Tool: file_read")
    assert prompt[4].content.startswith("The tool results above belong to the task")


@pytest.mark.asyncio
async def test_planned_tool_schema_is_inlined(scripted, make_note_handler):
    handler = make_note_handler()
    provider = scripted([FINISH])
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, '{"thought": "Need the note", "next_tool": "file_read"}')

    await continuation.continue_until_finished([], "plan", first.tool_results)

    system_prompt = provider.prompts[0][0].content
    assert "Details for the tool you planned to use next, `file_read`" in system_prompt
    assert '"required": [\n    "path"\n  ]' in system_prompt


@pytest.mark.asyncio
async def test_stops_at_max_iterations(scripted, make_note_handler):
    handler = make_note_handler(max_tool_calls=100, max_iterations=3)
    replies = [_read(f"n{i}.md", f"r{i}") for i in range(10)]
    provider = scripted(replies)
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, _read("a.md", "1"))

    result = await continuation.continue_until_finished([], _read("a.md", "1"), first.tool_results, current_content="")

    assert result.state == ContinuationState.MAX_ITERATIONS_REACHED
    assert result.iterations == 3
    assert len(provider.prompts) == 3
    assert result.content == MAX_ITERATIONS_MARKER


@pytest.mark.asyncio
async def test_limit_already_reached_stops_immediately(scripted, make_note_handler):
    handler = make_note_handler(max_tool_calls=1)
    provider = scripted([FINISH])
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, "Working " + _read("a.md", "1"))

    result = await continuation.continue_until_finished([], "Working", first.tool_results, current_content="Working")

    assert result.state == ContinuationState.LIMIT_REACHED
    assert result.limit_reached_during_continuation is True
    assert result.content == f"Working\n\n{LIMIT_STOPPED_MARKER}"
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_limit_reached_during_continuation(scripted, make_note_handler, tool_calls):
    handler = make_note_handler(max_tool_calls=2, max_iterations=10)
    provider = scripted([_read("b.md", "2"), _read("c.md", "3")])
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, _read("a.md", "1"))

    result = await continuation.continue_until_finished([], "x", first.tool_results, current_content="")

    assert result.state == ContinuationState.LIMIT_REACHED
    assert result.limit_reached_during_continuation is True
    assert result.content == LIMIT_DURING_CONTINUATION_MARKER
    assert tool_calls == ["a.md", "b.md"]
    assert handler.execution_count == 2


@pytest.mark.asyncio
async def test_provider_error_becomes_inline_marker(scripted, make_note_handler):
    handler = make_note_handler()
    provider = scripted([LLMAPIError("Ollama API error 500: boom", status_code=500)])
    continuation = TaskContinuation(handler, provider)
    first = await _first_turn(handler, _read("a.md", "1"))

    result = await continuation.continue_until_finished([], "x", first.tool_results, current_content="Partial")

    assert result.state == ContinuationState.FINISHED
    assert result.content == "Partial\n\n" + error_marker("Ollama API error 500: boom")


@pytest.mark.asyncio
async def test_blank_or_tool_free_reply_ends_loop(scripted, make_note_handler):
    handler = make_note_handler()
    first = await _first_turn(handler, _read("a.md", "1"))

    blank = await TaskContinuation(handler, scripted(["   "])).continue_until_finished(
        [], "x", first.tool_results, current_content="A"
    )
    prose = await TaskContinuation(handler, scripted(["The note says hello."])).continue_until_finished(
        [], "x", first.tool_results, current_content="A"
    )

    assert blank.state == ContinuationState.FINISHED
    assert blank.content == "A"
    assert prose.state == ContinuationState.FINISHED
    assert prose.content == "A\n\nThe note says hello."


@pytest.mark.asyncio
async def test_already_finished_initial_results_skip_the_loop(scripted, make_note_handler):
    handler = make_note_handler()
    provider = scripted([])
    first = await _first_turn(handler, FINISH)

    result = await TaskContinuation(handler, provider).continue_until_finished([], FINISH, first.tool_results)

    assert result.state == ContinuationState.FINISHED
    assert result.iterations == 0
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_abort_propagates(scripted, make_note_handler):
    handler = make_note_handler()
    first = await _first_turn(handler, _read("a.md", "1"))
    abort_event = asyncio.Event()
    abort_event.set()

    with pytest.raises(OperationAbortedError):
        await TaskContinuation(handler, scripted([FINISH])).continue_until_finished(
            [], "x", first.tool_results, abort_event=abort_event
        )


@pytest.mark.asyncio
async def test_rounds_are_recorded_and_repeats_are_cached(scripted, make_note_handler, tool_calls):
    handler = make_note_handler(max_iterations=3)
    store = InMemoryHistoryStore()
    provider = scripted([_read("b.md", "2"), _read("b.md", "2") + " " + FINISH])
    continuation = TaskContinuation(handler, provider, history_store=store)
    first = await _first_turn(handler, _read("a.md", "1"))
    seen: list[str] = []

    result = await continuation.continue_until_finished(
        [], "x", first.tool_results, current_content="", content_callback=seen.append
    )

    history = await store.get_history()
    assert result.state == ContinuationState.FINISHED
    assert tool_calls == ["a.md", "b.md"]
    assert [entry["role"] for entry in history] == ["assistant", "assistant"]
    assert history[0]["tool_results"][0]["command"]["request_id"] == "2"
    assert len(seen) == 2


def test_finished_signals_require_success():
    thought = ToolCommand(action="thought", parameters={"next_tool": "finished"})
    flagged = ToolCommand(action="file_read", parameters={"path": "a.md"}, finished=True)

    assert is_task_finished([ToolInvocation(thought, ToolResult(data={"next_tool": "finished"}))])
    assert is_task_finished([ToolInvocation(flagged, ToolResult(data="ok"))])
    assert not is_task_finished([ToolInvocation(flagged, ToolResult(success=False, error="nope"))])
    assert not is_task_finished([ToolInvocation(thought, ToolResult(data={"next_tool": "file_read"}))])


def test_requested_next_tool_uses_latest_plan():
    plan = ToolCommand(action="thought", parameters={})
    results = [
        ToolInvocation(plan, ToolResult(data={"next_tool": "file_list"})),
        ToolInvocation(plan, ToolResult(data={"next_tool": "file_read"})),
    ]

    assert requested_next_tool(results) == "file_read"
    assert requested_next_tool([ToolInvocation(plan, ToolResult(data={"next_tool": "finished"}))]) is None


@pytest.mark.asyncio
async def test_finishing_on_last_round_still_reports_cap(scripted, make_note_handler):
    handler = make_note_handler(max_iterations=2)
    provider = scripted([_read("b.md", "2"), FINISH])
    first = await _first_turn(handler, _read("a.md", "1"))
    seen: list[str] = []

    result = await TaskContinuation(handler, provider).continue_until_finished(
        [], "x", first.tool_results, current_content="", content_callback=seen.append
    )

    assert result.state == ContinuationState.FINISHED
    assert result.iterations == 2
    assert result.content == MAX_ITERATIONS_MARKER
    assert seen[-1] == MAX_ITERATIONS_MARKER


@pytest.mark.asyncio
async def test_callback_receives_error_marker(scripted, make_note_handler):
    handler = make_note_handler()
    first = await _first_turn(handler, _read("a.md", "1"))
    seen: list[str] = []

    result = await TaskContinuation(handler, scripted([RuntimeError("boom")])).continue_until_finished(
        [], "x", first.tool_results, current_content="", content_callback=seen.append
    )

    assert result.content == error_marker("boom")
    assert seen == [error_marker("boom")]


@pytest.mark.asyncio
async def test_callback_receives_limit_marker(scripted, make_note_handler):
    handler = make_note_handler(max_tool_calls=2)
    first = await _first_turn(handler, _read("a.md", "1"))
    seen: list[str] = []

    await TaskContinuation(handler, scripted([_read("b.md", "2")])).continue_until_finished(
        [], "x", first.tool_results, current_content="Start", content_callback=seen.append
    )

    assert seen == ["Start", f"Start\n\n{LIMIT_DURING_CONTINUATION_MARKER}"]


@pytest.mark.asyncio
async def test_callback_receives_content_on_blank_reply(scripted, make_note_handler):
    handler = make_note_handler()
    first = await _first_turn(handler, _read("a.md", "1"))
    seen: list[str] = []

    await TaskContinuation(handler, scripted([""])).continue_until_finished(
        [], "x", first.tool_results, current_content="Start", content_callback=seen.append
    )

    assert seen == ["Start"]
