"""Agent session: one conversation wired to a provider, tools and history."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from vault_agent.agent_types import ReasoningData, TaskStatus, ToolInvocation
from vault_agent.config import Config, get_config
from vault_agent.instructions import InstructionLoader, get_instruction_loader
from vault_agent.llm import CompletionProvider, Message, get_provider
from vault_agent.logging import get_logger
from vault_agent.response_handler import AgentResponseHandler, ToolEventSink
from vault_agent.session import HistoryStore, InMemoryHistoryStore, chat_message
from vault_agent.task_continuation import ContinuationResult, ContinuationState, TaskContinuation
from vault_agent.tools import ToolRegistry, create_default_registry

log = get_logger(__name__)


@dataclass
class AgentRunResult:
    """Outcome of one user message."""

    content: str
    task_status: TaskStatus | None = None
    tool_results: list[ToolInvocation] = field(default_factory=list)
    reasoning: ReasoningData | None = None
    continuation: ContinuationResult | None = None


class Agent:
    """A single chat session.

    Owns its response handler, so execution counters are never shared
    between sessions.
    """

    def __init__(
        self,
        provider: CompletionProvider | None = None,
        registry: ToolRegistry | None = None,
        config: Config | None = None,
        history_store: HistoryStore | None = None,
        instructions: InstructionLoader | None = None,
        event_sink: ToolEventSink | None = None,
    ):
        self.config = config or get_config()
        self.provider = provider or get_provider()
        self.registry = registry or create_default_registry(
            vault_root=self.config.resolved_vault_path(),
            enabled_tools=self.config.agent_mode.enabled_tools,
            trash_dir=self.config.vault.trash_dir,
        )
        self.history_store = history_store or InMemoryHistoryStore()
        self._granted_executions = 0
        self.instructions = instructions or get_instruction_loader()
        self.handler = AgentResponseHandler(
            self.config.agent_mode,
            self.registry,
            event_sink=event_sink,
        )
        self.continuation = TaskContinuation(
            self.handler,
            self.provider,
            self.config.agent_mode,
            history_store=self.history_store,
            instructions=self.instructions,
            temperature=self.config.model.temperature,
            max_tokens=self.config.model.max_tokens,
        )

    def _system_prompt(self) -> str:
        return self.instructions.build_system_prompt(
            self.registry.describe_available(),
            custom_system_message=self.handler.config.custom_system_message,
        )

    def _build_messages(self, history: list[dict[str, Any]]) -> list[Message]:
        messages = [Message(role="system", content=self._system_prompt())] if self.handler.config.enabled else []
        for entry in history:
            role = entry.get("role")
            if role in ("user", "assistant"):
                messages.append(Message(role=role, content=str(entry.get("content") or "")))
        return messages

    async def run(
        self,
        user_input: str,
        abort_event: asyncio.Event | None = None,
        stream_callback: Callable[[str], Any] | None = None,
        content_callback: Callable[[str], Any] | None = None,
    ) -> AgentRunResult:
        """Answer one user message, running tools and continuation as needed.

        Raises:
            OperationAbortedError if ``abort_event`` fires
            LLMError if the first completion fails
        """
        # A new user message is the session boundary for the execution budget;
        # extra executions granted since the last run carry over into this one.
        self.handler.reset_execution_count()
        if self._granted_executions:
            self.handler.add_tool_executions(self._granted_executions)
            self._granted_executions = 0

        await self.history_store.add_message(chat_message("user", user_input))
        history = await self.history_store.get_history()
        messages = self._build_messages(history)

        response = await self.provider.get_completion(
            messages,
            temperature=self.config.model.temperature,
            max_tokens=self.config.model.max_tokens,
            stream_callback=stream_callback,
            abort_event=abort_event,
        )
        turn = await self.handler.process_turn_with_status(
            response,
            history,
            context_label="main",
            abort_event=abort_event,
        )
        await self.history_store.add_message(turn.to_history_message())
        log.info(
            "Processed response",
            has_tools=turn.has_tools,
            tool_results=len(turn.tool_results),
            execution_count=self.handler.execution_count,
        )

        if not turn.tool_results:
            return AgentRunResult(
                content=turn.prose,
                task_status=turn.task_status,
                reasoning=turn.reasoning,
            )

        continuation = await self.continuation.continue_until_finished(
            messages,
            response,
            turn.tool_results,
            current_content=turn.prose,
            abort_event=abort_event,
            content_callback=content_callback,
        )
        if continuation.state == ContinuationState.FINISHED:
            status = self.handler.create_task_status(has_tools=False)
        elif continuation.state == ContinuationState.LIMIT_REACHED:
            status = self.handler.create_task_status(status="limit_reached")
        else:
            status = self.handler.create_task_status(status="stopped")

        return AgentRunResult(
            content=continuation.content,
            task_status=status,
            tool_results=continuation.tool_results,
            reasoning=turn.reasoning,
            continuation=continuation,
        )

    def add_tool_executions(self, count: int) -> None:
        """Raise the tool budget for the rest of this run and the next one."""
        self.handler.add_tool_executions(count)
        self._granted_executions += count

    async def new_conversation(self) -> None:
        """Clear history and counters."""
        await self.history_store.clear()
        self.handler.reset_execution_count()
        self._granted_executions = 0

    async def close(self) -> None:
        await self.provider.close()
        await self.history_store.close()
