"""Deduplication of tool commands against recorded chat history."""

from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from pydantic import ValidationError

from vault_agent.agent_types import ToolExecutionResult, ToolInvocation
from vault_agent.logging import get_logger
from vault_agent.tools.registry import ToolCommand, ToolResult

log = get_logger(__name__)

_ASSISTANT_ROLES = {"assistant"}


def _field(entry: Any, *names: str) -> Any:
    """Read the first present field from a dict or attribute-style entry."""
    for name in names:
        if isinstance(entry, dict):
            if name in entry:
                return entry[name]
        elif hasattr(entry, name):
            return getattr(entry, name)
    return None


def _coerce_record(raw: Any) -> ToolExecutionResult | None:
    if isinstance(raw, ToolExecutionResult):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        return ToolExecutionResult.model_validate(raw)
    except ValidationError:
        log.debug("Skipping unreadable tool result in history")
        return None


class ExecutionLedger:
    """Answer "has this command already run?" from persisted history.

    History entries are dicts (or objects) with ``role`` (or ``sender``) and
    an optional ``tool_results`` list of ``ToolExecutionResult`` records. Only
    assistant turns are scanned and only successful results count as executed,
    so a failed command can be retried by a later turn.

    The lookup is a linear scan over the history.
    """

    def iter_records(self, history: Iterable[Any] | None) -> Iterator[ToolExecutionResult]:
        """Yield successful recorded executions, oldest first."""
        for entry in history or ():
            role = _field(entry, "role", "sender")
            if role not in _ASSISTANT_ROLES:
                continue
            for raw in _field(entry, "tool_results", "toolResults") or ():
                record = _coerce_record(raw)
                if record is not None and record.result.success:
                    yield record

    def prior_result(self, command: ToolCommand, history: Iterable[Any] | None) -> ToolResult | None:
        """Return the cached result for ``command`` or ``None`` if it never ran."""
        key = command.identity_key()
        for record in self.iter_records(history):
            if record.command.identity_key() == key:
                return record.result
        return None

    def is_executed(self, command: ToolCommand, history: Iterable[Any] | None) -> bool:
        return self.prior_result(command, history) is not None

    def existing_results(
        self,
        commands: Sequence[ToolCommand],
        history: Iterable[Any] | None,
    ) -> list[ToolInvocation]:
        """Cached results for the commands that already ran, in command order."""
        _, done = self.partition(commands, history)
        return done

    def partition(
        self,
        commands: Sequence[ToolCommand],
        history: Iterable[Any] | None,
    ) -> tuple[list[ToolCommand], list[ToolInvocation]]:
        """Split commands into those still to execute and those already done.

        Returns:
            ``(to_execute, already_done)``; both keep the input order
        """
        cache: dict[str, ToolResult] = {}
        for record in self.iter_records(history):
            cache.setdefault(record.command.identity_key(), record.result)

        to_execute: list[ToolCommand] = []
        already_done: list[ToolInvocation] = []
        for command in commands:
            cached = cache.get(command.identity_key())
            if cached is None:
                to_execute.append(command)
            else:
                already_done.append(ToolInvocation(command, cached))
        return to_execute, already_done
