"""List tool for browsing vault folders."""

from pathlib import Path
from typing import Any

from vault_agent.exceptions import VaultPathError
from vault_agent.logging import get_logger
from vault_agent.tools.path_validation import validator_for
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class FileListTool(Tool):
    """List files and folders in a vault directory."""

    name = "file_list"
    description = "Lists files and folders in a directory with optional recursive traversal."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Folder path relative to vault root (empty for root)",
            },
            "recursive": {
                "type": "boolean",
                "description": "List files recursively",
            },
            "max_results": {
                "type": "number",
                "description": "Maximum number of entries to return (default: 100)",
            },
        },
        "required": [],
    }

    async def execute(
        self,
        path: str = "",
        recursive: bool = False,
        max_results: int = 100,
        **kwargs: Any,
    ) -> ToolResult:
        validator = validator_for(kwargs)
        try:
            folder = validator.to_absolute(path or "")
        except VaultPathError as e:
            return ToolResult(success=False, error=f"Path validation failed: {e}")

        relative = validator.relative(folder)
        if not folder.is_dir():
            return ToolResult(success=False, error=f"Folder not found: {relative or '(root)'}")

        limit = max(1, int(max_results))
        items: list[str] = []

        def walk(current: Path, indent: str) -> None:
            children = sorted(
                (child for child in current.iterdir() if not child.name.startswith(".")),
                key=lambda child: (child.is_dir(), child.name.lower()),
            )
            for child in children:
                if len(items) >= limit:
                    return
                if child.is_dir():
                    items.append(f"{indent}{child.name}/")
                    if recursive:
                        walk(child, indent + "  ")
                else:
                    items.append(f"{indent}{child.name}")

        try:
            walk(folder, "")
        except OSError as e:
            log.error("List failed", path=relative, error=str(e))
            return ToolResult(success=False, error=str(e))

        return ToolResult(
            success=True,
            data={
                "items": items,
                "count": len(items),
                "path": relative,
                "recursive": recursive,
                "max_results": limit,
                "truncated": len(items) >= limit,
            },
        )
