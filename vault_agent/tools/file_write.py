"""Write tool for creating or updating vault notes."""

from typing import Any

from vault_agent.exceptions import VaultPathError
from vault_agent.logging import get_logger
from vault_agent.tools.path_validation import validator_for
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class FileWriteTool(Tool):
    """Create, overwrite or append to a note."""

    name = "file_write"
    description = "Create or overwrite a file in the vault, or append to it."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path relative to vault root",
            },
            "content": {
                "type": "string",
                "description": "Content to write to the file",
            },
            "append": {
                "type": "boolean",
                "description": "Append to file instead of overwriting",
            },
            "create_folders": {
                "type": "boolean",
                "description": "Create missing parent folders (default true)",
            },
        },
        "required": ["path", "content"],
    }

    async def execute(
        self,
        path: str,
        content: str,
        append: bool = False,
        create_folders: bool = True,
        **kwargs: Any,
    ) -> ToolResult:
        validator = validator_for(kwargs)
        try:
            file_path = validator.to_absolute(path)
        except VaultPathError as e:
            return ToolResult(success=False, error=f"Path validation failed: {e}")

        relative = validator.relative(file_path)
        if not relative:
            return ToolResult(success=False, error="path must name a file, not the vault root")
        if file_path.is_dir():
            return ToolResult(success=False, error=f"Path is a folder: {relative}")

        existed = file_path.exists()
        if not file_path.parent.exists():
            if not create_folders:
                return ToolResult(
                    success=False,
                    error=f"Parent folder does not exist: {validator.relative(file_path.parent)}",
                )
            file_path.parent.mkdir(parents=True, exist_ok=True)

        text = str(content)
        try:
            with open(file_path, "a" if append else "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            log.error("Write failed", path=relative, error=str(e))
            return ToolResult(success=False, error=f"Failed to write file: {e}")

        if append and existed:
            action = "appended"
        elif existed:
            action = "modified"
        else:
            action = "created"
        return ToolResult(
            success=True,
            data={
                "file_path": relative,
                "action": action,
                "size": file_path.stat().st_size,
                "chars_written": len(text),
            },
        )
