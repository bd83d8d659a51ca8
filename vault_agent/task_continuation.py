"""Multi-round "continue until finished" loop over the response handler."""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vault_agent.agent_types import ToolInvocation
from vault_agent.config import AgentConfig
from vault_agent.exceptions import OperationAbortedError
from vault_agent.instructions import InstructionLoader, get_instruction_loader
from vault_agent.llm import CompletionProvider, Message, coerce_message
from vault_agent.logging import get_logger
from vault_agent.response_handler import AgentResponseHandler
from vault_agent.session import HistoryStore
from vault_agent.tools.thought import FINISHED_TOOL

log = get_logger(__name__)

LIMIT_STOPPED_MARKER = "*[Tool execution limit reached - task continuation stopped]*"
LIMIT_DURING_CONTINUATION_MARKER = "*[Tool execution limit reached during continuation]*"
MAX_ITERATIONS_MARKER = "*[Task continuation reached maximum iterations - stopping to prevent infinite loop]*"


def error_marker(message: str) -> str:
    return f"*[Error getting continuation: {message}]*"


class ContinuationState(str, Enum):
    ITERATING = "iterating"
    FINISHED = "finished"
    LIMIT_REACHED = "limit_reached"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


@dataclass
class ContinuationResult:
    content: str
    limit_reached_during_continuation: bool
    state: ContinuationState
    iterations: int = 0
    tool_results: list[ToolInvocation] = field(default_factory=list)


def is_task_finished(tool_results: Sequence[ToolInvocation]) -> bool:
    """True when a successful result carries the finished signal."""
    for command, result in tool_results:
        if not result.success:
            continue
        if command.finished:
            return True
        if command.action == "thought" and isinstance(result.data, dict):
            if result.data.get("finished") is True or result.data.get("next_tool") == FINISHED_TOOL:
                return True
    return False


def requested_next_tool(tool_results: Sequence[ToolInvocation]) -> str | None:
    """Latest ``next_tool`` planned by a successful thought, if any."""
    for command, result in reversed(tool_results):
        if command.action == "thought" and result.success and isinstance(result.data, dict):
            next_tool = result.data.get("next_tool")
            if isinstance(next_tool, str) and next_tool != FINISHED_TOOL:
                return next_tool
    return None


def _append(content: str, addition: str) -> str:
    if not addition:
        return content
    return f"{content}\n\n{addition}" if content else addition


class TaskContinuation:
    """Keep asking the model to finish while tool results keep arriving.

    Two independent caps stop the loop: ``max_iterations`` rounds and the
    handler's execution limit. Each terminal condition appends an inline
    marker to the content instead of raising; only aborts propagate.
    """

    def __init__(
        self,
        handler: AgentResponseHandler,
        provider: CompletionProvider,
        config: AgentConfig | None = None,
        history_store: HistoryStore | None = None,
        instructions: InstructionLoader | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        self.handler = handler
        self.provider = provider
        self.config = config or handler.config
        self.history_store = history_store
        self.instructions = instructions or get_instruction_loader()
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _build_messages(
        self,
        messages: Sequence[Message | dict[str, Any]],
        last_response: str,
        tool_message: Message,
        tool_results: Sequence[ToolInvocation],
    ) -> list[Message]:
        system_prompt = self.instructions.build_system_prompt(
            self.handler.registry.describe_available(),
            custom_system_message=self.config.custom_system_message,
            requested_tool=requested_next_tool(tool_results),
        )
        conversation = [m for m in (coerce_message(m) for m in messages) if m.role != "system"]
        return [
            Message(role="system", content=system_prompt),
            *conversation,
            Message(role="assistant", content=last_response),
            tool_message,
            Message(role="system", content=self.instructions.continuation_instruction()),
        ]

    async def continue_until_finished(
        self,
        messages: Sequence[Message | dict[str, Any]],
        initial_response_text: str,
        initial_tool_results: Sequence[ToolInvocation],
        current_content: str | None = None,
        history: Sequence[Any] | None = None,
        abort_event: asyncio.Event | None = None,
        content_callback: Callable[[str], Any] | None = None,
    ) -> ContinuationResult:
        """Drive continuation rounds until finished or a cap is hit.

        Args:
            messages: Conversation so far (system messages are replaced)
            initial_response_text: Model response that produced the initial results
            initial_tool_results: Results of that response
            current_content: Transcript text to extend; defaults to the response
            history: Chat history for deduplication when no store is attached
            abort_event: Cancels the loop; raises OperationAbortedError
            content_callback: Called with the assembled content after every round

        Returns:
            ContinuationResult
        """
        content = initial_response_text if current_content is None else current_content
        all_results = list(initial_tool_results)
        working_history = list(history or [])
        finished = is_task_finished(all_results)

        if self.handler.is_limit_reached():
            return ContinuationResult(
                content=_append(content, LIMIT_STOPPED_MARKER),
                limit_reached_during_continuation=True,
                state=ContinuationState.LIMIT_REACHED,
                tool_results=all_results,
            )

        max_iterations = self.config.max_iterations
        last_response = initial_response_text
        limit_reached = False
        iteration = 0
        log.debug("Starting task continuation", max_iterations=max_iterations, finished=finished)

        def render() -> None:
            if content_callback is not None:
                content_callback(content)

        while not finished and iteration < max_iterations:
            iteration += 1
            if abort_event is not None and abort_event.is_set():
                raise OperationAbortedError()
            if self.handler.is_limit_reached():
                content = _append(content, LIMIT_DURING_CONTINUATION_MARKER)
                limit_reached = True
                render()
                break

            tool_message = self.handler.create_tool_result_message(all_results)
            if tool_message is None:
                finished = True
                break

            if self.history_store is not None:
                working_history = await self.history_store.get_history()

            prompt = self._build_messages(messages, last_response, tool_message, all_results)
            try:
                next_text = await self.provider.get_completion(
                    prompt,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    abort_event=abort_event,
                )
            except (OperationAbortedError, asyncio.CancelledError):
                raise
            except Exception as e:
                log.error("Error getting continuation", iteration=iteration, error=str(e))
                content = _append(content, error_marker(str(e)))
                finished = True
                render()
                break

            if not next_text.strip():
                finished = True
                render()
                break

            turn = await self.handler.process_turn_with_status(
                next_text,
                working_history,
                context_label="continuation",
                abort_event=abort_event,
            )
            content = _append(content, turn.prose)
            if turn.has_tools:
                finished = is_task_finished(turn.tool_results)
                all_results.extend(turn.tool_results)
                last_response = next_text
                if turn.tool_results:
                    entry = turn.to_history_message(next_text)
                    if self.history_store is not None:
                        await self.history_store.add_message(entry)
                    else:
                        working_history.append(entry)
            else:
                # A response without tool calls ends the loop, even without an
                # explicit finished signal.
                finished = True

            log.debug("Continuation iteration", iteration=iteration, finished=finished, results=len(all_results))
            render()

        if iteration >= max_iterations and (iteration > 0 or not finished):
            log.info("Task continuation reached maximum iterations", iterations=iteration)
            content = _append(content, MAX_ITERATIONS_MARKER)
            render()

        if finished:
            state = ContinuationState.FINISHED
        elif limit_reached:
            state = ContinuationState.LIMIT_REACHED
        else:
            state = ContinuationState.MAX_ITERATIONS_REACHED

        return ContinuationResult(
            content=content,
            limit_reached_during_continuation=limit_reached,
            state=state,
            iterations=iteration,
            tool_results=all_results,
        )
