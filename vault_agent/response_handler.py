"""One agent turn: parse, deduplicate, budget and execute tool commands."""

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from vault_agent.agent_types import (
    CONTINUABLE_STATES,
    TaskProgress,
    TaskState,
    TaskStatus,
    ToolExecutionResult,
    ToolInvocation,
    TurnOutcome,
    TurnResult,
    utcnow_iso,
)
from vault_agent.command_parser import CommandParser
from vault_agent.config import AgentConfig
from vault_agent.exceptions import OperationAbortedError, ToolExecutionError
from vault_agent.execution_ledger import ExecutionLedger
from vault_agent.llm import Message
from vault_agent.logging import get_logger
from vault_agent.reasoning import ReasoningProcessor
from vault_agent.tool_result_formatter import ToolResultFormatter
from vault_agent.tools.registry import ToolCommand, ToolRegistry, ToolResult

log = get_logger(__name__)


def limit_marker(limit: int) -> str:
    return f"*{limit} [Tool execution limit reached]*"


@dataclass
class ToolDisplay:
    """Rendered view of one tool outcome, cached by ``display_id``."""

    display_id: str
    command: ToolCommand
    result: ToolResult
    markdown: str
    timestamp: str = field(default_factory=utcnow_iso)


class ToolEventSink(Protocol):
    """Live notifications for a UI; the handler works the same without one."""

    def on_tool_result(self, result: ToolResult, command: ToolCommand) -> None: ...

    def on_tool_display(self, display: ToolDisplay) -> None: ...


class NullEventSink:
    def on_tool_result(self, result: ToolResult, command: ToolCommand) -> None:
        pass

    def on_tool_display(self, display: ToolDisplay) -> None:
        pass


class AgentResponseHandler:
    """Execute the not-yet-executed commands of a model response within budget.

    Each instance owns its counters (``execution_count`` and the temporary
    limit increase) and its display cache; give every chat session its own
    handler. Counters only move back through ``reset_execution_count``.
    """

    def __init__(
        self,
        config: AgentConfig,
        registry: ToolRegistry,
        parser: CommandParser | None = None,
        ledger: ExecutionLedger | None = None,
        event_sink: ToolEventSink | None = None,
        formatter: ToolResultFormatter | None = None,
        reasoning: ReasoningProcessor | None = None,
    ):
        self._config = config
        self.registry = registry
        # Without an explicit parser, valid actions follow the registry on every turn.
        self._parser_follows_registry = parser is None
        self.parser = parser or CommandParser(registry.list_tools())
        self.ledger = ledger or ExecutionLedger()
        self.event_sink: ToolEventSink = event_sink or NullEventSink()
        self.formatter = formatter or ToolResultFormatter()
        self.reasoning = reasoning or ReasoningProcessor()

        self._execution_count = 0
        self._temporary_increase = 0
        self._displays: dict[str, ToolDisplay] = {}

    @property
    def config(self) -> AgentConfig:
        return self._config

    def set_agent_mode_enabled(self, enabled: bool) -> None:
        self._config = self._config.model_copy(update={"enabled": enabled})
        log.info("Agent mode toggled", enabled=enabled)

    # Budget

    @property
    def execution_count(self) -> int:
        return self._execution_count

    @property
    def effective_limit(self) -> int:
        return self._config.max_tool_calls + self._temporary_increase

    def is_limit_reached(self) -> bool:
        return self._execution_count >= self.effective_limit

    def add_tool_executions(self, count: int) -> None:
        """Grant ``count`` extra executions for the rest of the session."""
        if count <= 0:
            raise ValueError("Additional tool executions must be positive")
        self._temporary_increase += count
        log.info("Tool execution limit raised", added=count, effective_limit=self.effective_limit)

    def reset_execution_count(self) -> None:
        """Zero the counters and drop cached displays.

        Call only at a session boundary (new user message, explicit reset).
        """
        self._execution_count = 0
        self._temporary_increase = 0
        self._displays.clear()
        log.debug("Execution count reset")

    def get_execution_stats(self) -> dict[str, int]:
        limit = self.effective_limit
        return {
            "count": self._execution_count,
            "limit": limit,
            "remaining": max(0, limit - self._execution_count),
        }

    def create_task_status(self, has_tools: bool = True, status: TaskState | None = None) -> TaskStatus:
        """Derive the task status from the current counters.

        Args:
            has_tools: Whether the turn contained tool commands
            status: Explicit status (e.g. ``"stopped"``) overriding derivation
        """
        limit = self.effective_limit
        if status is None:
            if not has_tools:
                status = "completed"
            elif self.is_limit_reached():
                status = "limit_reached"
            else:
                status = "running"
        return TaskStatus(
            status=status,
            progress=TaskProgress(
                current=self._execution_count,
                total=limit,
                description=f"{self._execution_count}/{limit} tool executions",
            ),
            tool_execution_count=self._execution_count,
            max_tool_executions=limit,
            can_continue=status in CONTINUABLE_STATES,
        )

    # Turn processing

    async def process_turn(
        self,
        text: str,
        history: Iterable[Any] | None = None,
        context_label: str = "main",
        abort_event: asyncio.Event | None = None,
    ) -> TurnResult:
        """Process one model response.

        Args:
            text: Raw model response
            history: Persisted chat history used for deduplication
            context_label: Label bound to log events (``main``, ``continuation``)
            abort_event: Stops the turn before the next command when set

        Returns:
            TurnResult with prose and ``(command, result)`` pairs in textual order

        Raises:
            OperationAbortedError if ``abort_event`` is set during the turn
        """
        turn_log = log.bind(context=context_label)
        if not self._config.enabled:
            return TurnResult(prose=text, tool_results=[], has_tools=False)

        if self._parser_follows_registry:
            self.parser.set_valid_actions(self.registry.list_tools())
        parsed = self.parser.parse(text)
        if not parsed.commands:
            turn_log.debug("No tool commands found in response")
            return TurnResult(prose=parsed.prose, tool_results=[], has_tools=False)

        history = list(history or [])
        to_execute, already_done = self.ledger.partition(parsed.commands, history)
        if not to_execute:
            turn_log.debug("All commands already executed, skipping", count=len(already_done))
            return TurnResult(prose=parsed.prose, tool_results=already_done, has_tools=True)

        if self.is_limit_reached():
            turn_log.info(
                "Tool execution limit reached",
                execution_count=self._execution_count,
                effective_limit=self.effective_limit,
            )
            prose = f"{parsed.prose}\n\n{limit_marker(self.effective_limit)}".lstrip()
            return TurnResult(prose=prose, tool_results=[], has_tools=True)

        cached = {id(item.command): item for item in already_done}
        tool_results: list[ToolInvocation] = []
        stopped = False
        for command in parsed.commands:
            if id(command) in cached:
                tool_results.append(cached[id(command)])
                continue
            if stopped:
                turn_log.debug("Dropping command after limit", action=command.action)
                continue
            if abort_event is not None and abort_event.is_set():
                raise OperationAbortedError()

            result = await self._execute(command, abort_event, turn_log)
            self._execution_count += 1
            invocation = ToolInvocation(command, result)
            tool_results.append(invocation)
            self._publish(invocation)

            if abort_event is not None and abort_event.is_set():
                raise OperationAbortedError()
            if self.is_limit_reached():
                turn_log.info("Tool execution limit reached mid-turn", effective_limit=self.effective_limit)
                stopped = True

        return TurnResult(prose=parsed.prose, tool_results=tool_results, has_tools=True)

    async def process_turn_with_status(
        self,
        text: str,
        history: Iterable[Any] | None = None,
        context_label: str = "main",
        abort_event: asyncio.Event | None = None,
    ) -> TurnOutcome:
        """Process a turn and attach task status, reasoning and execution records."""
        turn = await self.process_turn(text, history, context_label, abort_event)
        reasoning, records = self.reasoning.process(turn.tool_results)
        status = self.create_task_status(turn.has_tools)
        return TurnOutcome(
            prose=turn.prose,
            tool_results=turn.tool_results,
            has_tools=turn.has_tools,
            task_status=status,
            reasoning=reasoning,
            tool_execution_results=records,
            should_show_limit_warning=status.status == "limit_reached",
        )

    async def rerun_tool(
        self,
        command: ToolCommand,
        abort_event: asyncio.Event | None = None,
    ) -> ToolExecutionResult:
        """Re-execute a command on explicit request.

        Skips deduplication and does not consume the execution budget.
        """
        rerun_log = log.bind(context="rerun")
        result = await self._execute(command, abort_event, rerun_log)
        invocation = ToolInvocation(command, result)
        self._publish(invocation)
        return ToolExecutionResult.from_invocation(invocation)

    def create_tool_result_message(self, tool_results: Sequence[ToolInvocation]) -> Message | None:
        return self.formatter.create_tool_result_message(tool_results)

    async def _execute(
        self,
        command: ToolCommand,
        abort_event: asyncio.Event | None,
        turn_log: Any,
    ) -> ToolResult:
        try:
            return await self.registry.execute(
                command,
                timeout_seconds=self._config.timeout_seconds,
                abort_event=abort_event,
            )
        except (asyncio.CancelledError, OperationAbortedError):
            raise
        except Exception as e:
            turn_log.error("Tool execution error", action=command.action, error=str(e))
            return ToolResult(
                success=False,
                error=str(ToolExecutionError(command.action, str(e))),
                request_id=command.request_id or None,
            )

    # Displays and notifications

    def _publish(self, invocation: ToolInvocation) -> None:
        command, result = invocation
        display = ToolDisplay(
            display_id=f"{command.action}-{command.request_id}",
            command=command,
            result=result,
            markdown=self.formatter.to_markdown(command, result),
        )
        self._displays[display.display_id] = display
        try:
            self.event_sink.on_tool_result(result, command)
            self.event_sink.on_tool_display(display)
        except Exception as e:
            log.warning("Tool event sink failed", action=command.action, error=str(e))

    def get_tool_displays(self) -> dict[str, ToolDisplay]:
        return dict(self._displays)

    def get_tool_markdown(self, display_id: str) -> str | None:
        display = self._displays.get(display_id)
        return display.markdown if display else None

    def get_combined_tool_markdown(self) -> str:
        return "\n\n".join(display.markdown for display in self._displays.values())

    def clear_tool_displays(self) -> None:
        self._displays.clear()
