"""Load and render prompt templates from disk.

Supports a two-layer override system:
  1. Personal overrides in ``~/.vault-agent/instructions/`` (highest priority)
  2. Package defaults in ``vault_agent/prompts/``
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping


_PERSONAL_DIR = Path("~/.vault-agent/instructions").expanduser()

SYSTEM_PROMPT_TEMPLATE = "agent_system_prompt.md"
CONTINUATION_TEMPLATE = "continuation_instruction.md"
REQUESTED_TOOL_TEMPLATE = "requested_tool_details.md"


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render prompt templates with personal-override support.

    Resolution order for every template:
      1. ``personal_dir / name``  (``~/.vault-agent/instructions/``)
      2. ``base_dir / name``      (packaged ``prompts/``)
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("VAULT_AGENT_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "prompts").resolve()

    def _path(self, name: str) -> Path:
        """Return the effective file path, preferring the personal override."""
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def is_overridden(self, name: str) -> bool:
        """Return ``True`` if a personal override exists for *name*."""
        return (self.personal_dir / name).is_file()

    def load(self, name: str) -> str:
        """Load template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(
                f"Instruction template not found: {path}. "
                "Add the file under the prompts folder."
            )
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, **variables: object) -> str:
        """Render template with simple ``str.format`` placeholder substitution."""
        template = self.load(name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))

    def build_system_prompt(
        self,
        tools: list[dict[str, Any]],
        custom_system_message: str = "",
        requested_tool: str | None = None,
    ) -> str:
        """Agent system prompt listing the available tools.

        Args:
            tools: ``ToolRegistry.describe_available()`` output
            custom_system_message: Extra operator instructions appended last
            requested_tool: Action whose full parameter schema should be inlined
        """
        descriptions = "\n".join(
            f"{idx}. {tool['action']} - {tool['description']}"
            for idx, tool in enumerate(tools, start=1)
        )
        details = ""
        for tool in tools:
            if requested_tool and tool["action"] == requested_tool:
                details = self.render(
                    REQUESTED_TOOL_TEMPLATE,
                    action=tool["action"],
                    description=tool["description"],
                    parameter_schema=json.dumps(tool["parameter_schema"], indent=2),
                )
                break
        prompt = self.render(
            SYSTEM_PROMPT_TEMPLATE,
            tool_descriptions=descriptions or "(no tools available)",
            requested_tool_details=details,
            custom_system_message=custom_system_message,
        )
        return prompt.strip()

    def continuation_instruction(self) -> str:
        return self.load(CONTINUATION_TEMPLATE)


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    """Get the shared instruction loader."""
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader
