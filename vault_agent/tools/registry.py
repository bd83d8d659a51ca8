"""Tool registry, base tool class and the command/result payloads."""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from vault_agent.exceptions import (
    ToolBlockedError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
)
from vault_agent.logging import get_logger

log = get_logger(__name__)

COMMAND_KEY_SEPARATOR = ":"
_MISSING_REQUEST_ID = "no-id"


def _normalize_tool_name(value: str) -> str:
    """Normalize tool names for policy comparisons."""
    return str(value or "").strip().lower()


def canonical_json(value: Any) -> str:
    """Serialize to JSON with sorted keys so equal maps give equal strings."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


class ToolCommand(BaseModel):
    """Structured tool invocation extracted from model output."""

    action: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    request_id: str = Field(
        default="",
        validation_alias=AliasChoices("request_id", "requestId"),
    )
    finished: bool = False

    def identity_key(self) -> str:
        """Deduplication key: action, canonical parameters and request id."""
        return COMMAND_KEY_SEPARATOR.join(
            [
                self.action,
                canonical_json(self.parameters or {}),
                self.request_id or _MISSING_REQUEST_ID,
            ]
        )


class ToolResult(BaseModel):
    """Result from tool execution."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: Any = None
    error: str | None = None
    request_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("request_id", "requestId"),
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_failure_error(cls, values: Any) -> Any:
        """Ensure failed results always provide an error message."""
        if not isinstance(values, dict) or values.get("success", True):
            return values
        if str(values.get("error") or "").strip():
            return values
        data = values.get("data")
        fallback = data.strip() if isinstance(data, str) else ""
        return {**values, "error": fallback or "Tool execution failed"}

    def with_request_id(self, request_id: str | None) -> "ToolResult":
        """Return a copy stamped with the originating request id."""
        if self.request_id or not request_id:
            return self
        return self.model_copy(update={"request_id": request_id})


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool parameters plus the registry's ``_vault_root`` and
                ``_abort_event`` context values

        Returns:
            ToolResult with success status and data
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for prompt construction."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class ToolPolicy(BaseModel):
    """Allow/deny rule set for the tools exposed to the model."""

    allow: list[str] | None = None
    deny: list[str] = Field(default_factory=list)

    def permits(self, name: str) -> bool:
        normalized = _normalize_tool_name(name)
        if self.allow is not None and normalized not in {_normalize_tool_name(n) for n in self.allow}:
            return False
        return normalized not in {_normalize_tool_name(n) for n in self.deny}


class ToolRegistry:
    """Registry mapping action names to tools.

    ``execute`` turns every failure mode into a failed ``ToolResult`` so one bad
    command never aborts a whole turn; only task cancellation propagates.
    """

    def __init__(self, vault_root: Path | str | None = None):
        self._tools: dict[str, Tool] = {}
        self._policy: ToolPolicy | None = None
        self._vault_root = Path.cwd()
        self.set_vault_root(vault_root or Path.cwd())

    def set_vault_root(self, vault_root: Path | str) -> None:
        """Set the directory vault tools operate on."""
        self._vault_root = Path(vault_root).expanduser().resolve()

    @property
    def vault_root(self) -> Path:
        return self._vault_root

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def set_policy(self, policy: ToolPolicy | dict[str, Any] | None) -> None:
        """Set the allow/deny policy applied to listing and execution."""
        if policy is None or isinstance(policy, ToolPolicy):
            self._policy = policy
        elif isinstance(policy, dict):
            self._policy = ToolPolicy(**policy)
        else:
            raise TypeError(f"Unsupported policy type: {type(policy)!r}")

    def _is_permitted(self, name: str) -> bool:
        return self._policy is None or self._policy.permits(name)

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List tool names permitted by the current policy."""
        return [name for name in self._tools if self._is_permitted(name)]

    def describe_available(self) -> list[dict[str, Any]]:
        """Describe permitted tools for the prompt builder."""
        return [
            {
                "action": definition["name"],
                "description": definition["description"],
                "parameter_schema": definition["parameters"],
            }
            for definition in (self._tools[name].get_definition() for name in self.list_tools())
        ]

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            pass

    @staticmethod
    async def _bridge_abort_event(source: asyncio.Event, target: asyncio.Event) -> None:
        """Mirror external abort event to local tool abort event."""
        await source.wait()
        target.set()

    async def execute(
        self,
        command: ToolCommand,
        timeout_seconds: float | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a command and return its result.

        Args:
            command: Parsed tool command
            timeout_seconds: Deadline override; defaults to the tool's own
            abort_event: Optional event that cancels the running tool

        Returns:
            ToolResult; failures (unknown action, policy, bad arguments, tool
            exception, timeout, abort) come back with ``success=False``
        """
        name = command.action
        try:
            tool = self.get(name)
            if not self._is_permitted(name):
                raise ToolBlockedError(name, "Blocked by tool policy")
            tool.validate_arguments(command.parameters)
            result = await self._run_tool(tool, command.parameters, timeout_seconds, abort_event)
        except asyncio.CancelledError:
            raise
        except ToolError as e:
            log.warning("Tool execution failed", tool=name, error=str(e))
            result = ToolResult(success=False, error=str(e))
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            result = ToolResult(success=False, error=str(ToolExecutionError(name, str(e))))
        return result.with_request_id(command.request_id)

    async def _run_tool(
        self,
        tool: Tool,
        arguments: dict[str, Any],
        timeout_seconds: float | None,
        abort_event: asyncio.Event | None,
    ) -> ToolResult:
        """Run one tool with timeout / abort propagation."""
        name = tool.name
        execute_task: asyncio.Task[ToolResult] | None = None
        abort_wait_task: asyncio.Task[bool] | None = None
        bridge_task: asyncio.Task[None] | None = None
        tool_abort_event = asyncio.Event()
        try:
            log.info("Executing tool", tool=name, args=arguments)
            timeout = float(timeout_seconds or getattr(tool, "timeout_seconds", 30.0) or 30.0)

            if abort_event is not None:
                bridge_task = asyncio.create_task(
                    self._bridge_abort_event(abort_event, tool_abort_event)
                )

            kwargs = dict(arguments)
            kwargs["_vault_root"] = self.vault_root
            kwargs["_abort_event"] = tool_abort_event
            execute_task = asyncio.create_task(tool.execute(**kwargs))
            abort_wait_task = asyncio.create_task(tool_abort_event.wait())
            done, _ = await asyncio.wait(
                {execute_task, abort_wait_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if execute_task in done:
                result = await execute_task
                if not isinstance(result, ToolResult):
                    raise ToolExecutionError(name, "Tool returned invalid result payload")
                log.info("Tool executed", tool=name, success=result.success)
                return result

            if abort_wait_task in done:
                await self._cancel_task(execute_task)
                raise ToolExecutionError(name, "Execution aborted")

            tool_abort_event.set()
            await self._cancel_task(execute_task)
            timeout_label = int(timeout) if timeout.is_integer() else timeout
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except asyncio.CancelledError:
            tool_abort_event.set()
            await self._cancel_task(execute_task)
            raise
        finally:
            await self._cancel_task(abort_wait_task)
            await self._cancel_task(bridge_task)
