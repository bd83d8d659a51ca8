"""Tools package for Vault Agent."""

from pathlib import Path

from vault_agent.tools.registry import (
    Tool,
    ToolCommand,
    ToolPolicy,
    ToolRegistry,
    ToolResult,
    canonical_json,
)
from vault_agent.tools.file_delete import FileDeleteTool
from vault_agent.tools.file_list import FileListTool
from vault_agent.tools.file_move import FileMoveTool
from vault_agent.tools.file_read import FileReadTool
from vault_agent.tools.file_search import FileSearchTool
from vault_agent.tools.file_write import FileWriteTool
from vault_agent.tools.path_validation import PathValidator
from vault_agent.tools.thought import ThoughtTool


def create_default_registry(
    vault_root: Path | str | None = None,
    enabled_tools: list[str] | None = None,
    trash_dir: str = ".trash",
) -> ToolRegistry:
    """Build a registry holding the built-in vault tools.

    Args:
        vault_root: Directory the file tools operate on
        enabled_tools: Optional allow-list of action names
        trash_dir: Vault-relative folder used by ``file_delete``
    """
    registry = ToolRegistry(vault_root=vault_root)
    for tool in (
        FileSearchTool(),
        FileReadTool(),
        FileWriteTool(),
        FileMoveTool(),
        ThoughtTool(),
        FileListTool(),
        FileDeleteTool(trash_dir=trash_dir),
    ):
        registry.register(tool)
    if enabled_tools is not None:
        registry.set_policy(ToolPolicy(allow=list(enabled_tools)))
    return registry


__all__ = [
    "Tool",
    "ToolCommand",
    "ToolPolicy",
    "ToolRegistry",
    "ToolResult",
    "canonical_json",
    "create_default_registry",
    "PathValidator",
    "FileDeleteTool",
    "FileListTool",
    "FileMoveTool",
    "FileReadTool",
    "FileSearchTool",
    "FileWriteTool",
    "ThoughtTool",
]
