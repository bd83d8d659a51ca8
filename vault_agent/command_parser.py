"""Extract tool commands embedded in free-text model responses.

Supported forms, collected in order of appearance:

- ``[[tool:file_write {"path": "a.md"} #req1]]``
- a response that is entirely a JSON command object or an array of them
- JSON command objects inline in prose or inside a ```json fence
- the thought shorthand ``{"thought": "...", "next_tool": "..."}``

Anything that fails to parse, or names an unknown action, stays in the prose.
"""

import json
import re
import secrets
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from vault_agent.logging import get_logger
from vault_agent.tools.registry import ToolCommand

log = get_logger(__name__)

_BRACKET_OPEN_RE = re.compile(r"\[\[tool:([A-Za-z_][\w.-]*)")
_REQUEST_ID_RE = re.compile(r"#([\w.:-]+)")
_FENCE_BEFORE_RE = re.compile(r"```(?:json)?[ \t]*\n?[ \t]*$")
_FENCE_AFTER_RE = re.compile(r"[ \t]*\n?[ \t]*```")
_RESERVED_KEYS = {"action", "requestId", "request_id", "finished"}
_THOUGHT_OPTIONAL_KEYS = {
    "next_action_description": ("next_action_description", "nextActionDescription"),
    "step": ("step",),
    "total_steps": ("total_steps", "totalSteps"),
}


@dataclass
class ParsedResponse:
    """Prose left after removing commands, plus the commands in textual order."""

    prose: str
    commands: list[ToolCommand] = field(default_factory=list)


@dataclass
class _Fragment:
    start: int
    end: int
    command: ToolCommand


def generate_request_id() -> str:
    """Return a fresh ``req_<epoch-ms>_<random>`` identifier."""
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _balanced_object_end(text: str, start: int) -> int | None:
    """Return the index after the ``}`` closing the object opened at ``start``."""
    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return idx + 1
    return None


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


class CommandParser:
    """Split a model response into prose and ordered ``ToolCommand``s."""

    def __init__(self, valid_actions: Iterable[str] | None = None):
        self._valid_actions: set[str] | None = None
        self.set_valid_actions(valid_actions)

    def set_valid_actions(self, valid_actions: Iterable[str] | None) -> None:
        """Restrict accepted actions; ``None`` accepts any action name."""
        self._valid_actions = set(valid_actions) if valid_actions is not None else None

    def parse(self, text: str) -> ParsedResponse:
        """Parse a response.

        Args:
            text: Raw model output

        Returns:
            ParsedResponse with cleaned prose and commands in order of appearance
        """
        if not text or not text.strip():
            return ParsedResponse(prose=(text or "").strip())

        whole = self._parse_whole_response(text)
        if whole is not None:
            return whole

        fragments = self._bracket_fragments(text)
        fragments.extend(self._json_fragments(text, [(f.start, f.end) for f in fragments]))
        fragments.sort(key=lambda fragment: fragment.start)

        commands = [fragment.command for fragment in fragments]
        log.debug("Parsed response", commands=[c.action for c in commands])
        return ParsedResponse(prose=self._remove_fragments(text, fragments), commands=commands)

    def _parse_whole_response(self, text: str) -> ParsedResponse | None:
        """Handle responses that are nothing but a JSON command or command array."""
        try:
            parsed = json.loads(text.strip())
        except ValueError:
            return None

        items = parsed if isinstance(parsed, list) else [parsed]
        commands = [
            command
            for item in items
            if isinstance(item, dict) and (command := self._command_from_object(item)) is not None
        ]
        if not commands or len(commands) != len(items):
            # Keep rejected items in prose.
            return None
        return ParsedResponse(prose="", commands=commands)

    def _bracket_fragments(self, text: str) -> list[_Fragment]:
        fragments: list[_Fragment] = []
        cursor = 0
        for match in _BRACKET_OPEN_RE.finditer(text):
            if match.start() < cursor:
                continue
            parsed = self._parse_bracket(text, match)
            if parsed is None:
                log.debug("Ignoring malformed bracket command", fragment=text[match.start():match.start() + 80])
                continue
            fragments.append(parsed)
            cursor = parsed.end
        return fragments

    def _parse_bracket(self, text: str, match: re.Match[str]) -> _Fragment | None:
        action = match.group(1)
        pos = _skip_whitespace(text, match.end())
        parameters: dict[str, Any] = {}
        if text.startswith("{", pos):
            end = _balanced_object_end(text, pos)
            if end is None:
                return None
            try:
                loaded = json.loads(text[pos:end])
            except ValueError:
                return None
            if not isinstance(loaded, dict):
                return None
            parameters = loaded
            pos = _skip_whitespace(text, end)

        request_id = None
        id_match = _REQUEST_ID_RE.match(text, pos)
        if id_match:
            request_id = id_match.group(1)
            pos = _skip_whitespace(text, id_match.end())
        if not text.startswith("]]", pos):
            return None

        finished = parameters.pop("finished", False) if isinstance(parameters.get("finished"), bool) else False
        command = self._build_command(action, parameters, request_id, finished)
        if command is None:
            return None
        return _Fragment(start=match.start(), end=pos + 2, command=command)

    def _json_fragments(self, text: str, taken: list[tuple[int, int]]) -> list[_Fragment]:
        fragments: list[_Fragment] = []
        idx = 0
        while idx < len(text):
            span = next(((s, e) for s, e in taken if s <= idx < e), None)
            if span is not None:
                idx = span[1]
                continue
            if text[idx] != "{":
                idx += 1
                continue
            end = _balanced_object_end(text, idx)
            if end is None:
                idx += 1
                continue
            try:
                loaded = json.loads(text[idx:end])
            except ValueError:
                # Not JSON as a whole; an inner object may still be a command.
                idx += 1
                continue
            command = self._command_from_object(loaded) if isinstance(loaded, dict) else None
            if command is not None:
                start, stop = self._extend_over_fence(text, idx, end)
                fragments.append(_Fragment(start=start, end=stop, command=command))
            idx = end
        return fragments

    @staticmethod
    def _extend_over_fence(text: str, start: int, end: int) -> tuple[int, int]:
        """Widen the span to a surrounding code fence that holds only this object."""
        before = _FENCE_BEFORE_RE.search(text, 0, start)
        after = _FENCE_AFTER_RE.match(text, end)
        if before and after:
            return before.start(), after.end()
        return start, end

    def _command_from_object(self, payload: dict[str, Any]) -> ToolCommand | None:
        action = payload.get("action")
        if isinstance(action, str) and action.strip():
            parameters = payload.get("parameters")
            if parameters is None:
                parameters = {k: v for k, v in payload.items() if k not in _RESERVED_KEYS}
            elif not isinstance(parameters, dict):
                return None
            request_id = payload.get("requestId") or payload.get("request_id")
            return self._build_command(
                action.strip(),
                parameters,
                str(request_id) if request_id else None,
                payload.get("finished") is True,
            )

        thought = payload.get("thought")
        next_tool = payload.get("next_tool") or payload.get("nextTool")
        if thought and isinstance(next_tool, str) and next_tool.strip():
            parameters = {"thought": thought, "next_tool": next_tool}
            for target, aliases in _THOUGHT_OPTIONAL_KEYS.items():
                for alias in aliases:
                    if payload.get(alias) is not None:
                        parameters[target] = payload[alias]
                        break
            return self._build_command(
                "thought",
                parameters,
                None,
                next_tool.strip().lower() == "finished",
            )
        return None

    def _build_command(
        self,
        action: str,
        parameters: dict[str, Any],
        request_id: str | None,
        finished: bool,
    ) -> ToolCommand | None:
        if self._valid_actions is not None and action not in self._valid_actions:
            log.debug("Command action not in valid actions", action=action)
            return None
        return ToolCommand(
            action=action,
            parameters=parameters,
            request_id=request_id or generate_request_id(),
            finished=finished,
        )

    @staticmethod
    def _remove_fragments(text: str, fragments: list[_Fragment]) -> str:
        pieces: list[str] = []
        cursor = 0
        for fragment in fragments:
            pieces.append(text[cursor:fragment.start])
            cursor = max(cursor, fragment.end)
        pieces.append(text[cursor:])
        prose = "".join(pieces)
        prose = re.sub(r"[ \t]+\n", "\n", prose)
        prose = re.sub(r"\n{3,}", "\n\n", prose)
        return prose.strip()
