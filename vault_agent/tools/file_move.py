"""Move/rename tool for vault files."""

import shutil
from typing import Any

from vault_agent.exceptions import VaultPathError
from vault_agent.logging import get_logger
from vault_agent.tools.path_validation import validator_for
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class FileMoveTool(Tool):
    """Relocate or rename a file inside the vault."""

    name = "file_move"
    description = (
        "Relocates or renames files within the vault, with options to create "
        "missing folders and to overwrite an existing destination."
    )
    parameters = {
        "type": "object",
        "properties": {
            "source_path": {"type": "string", "description": "Path of the source file"},
            "path": {"type": "string", "description": "Alias for source_path"},
            "destination_path": {"type": "string", "description": "New path for the file"},
            "new_name": {
                "type": "string",
                "description": "New file name in the same folder; takes precedence over destination_path",
            },
            "create_folders": {
                "type": "boolean",
                "description": "Create parent folders if they don't exist (default true)",
            },
            "overwrite": {
                "type": "boolean",
                "description": "Overwrite the destination if it exists (default false)",
            },
        },
        "required": [],
    }

    async def execute(
        self,
        source_path: str | None = None,
        path: str | None = None,
        destination_path: str | None = None,
        new_name: str | None = None,
        create_folders: bool = True,
        overwrite: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        raw_source = source_path or path
        if not raw_source:
            return ToolResult(success=False, error="source_path or path parameter is required.")

        validator = validator_for(kwargs)
        try:
            source = validator.to_absolute(raw_source)
        except VaultPathError as e:
            return ToolResult(success=False, error=f"Path validation failed for source_path: {e}")
        if not source.is_file():
            return ToolResult(success=False, error=f"Source file not found: {raw_source}")

        try:
            if new_name:
                if "/" in new_name or "\\" in new_name:
                    return ToolResult(success=False, error="new_name must not contain path separators")
                destination = validator.to_absolute(
                    f"{validator.relative(source.parent)}/{new_name}".lstrip("/")
                )
            elif destination_path:
                destination = validator.to_absolute(destination_path)
            else:
                return ToolResult(success=False, error="destination_path or new_name parameter is required.")
        except VaultPathError as e:
            return ToolResult(success=False, error=f"Path validation failed for destination_path: {e}")

        source_rel = validator.relative(source)
        destination_rel = validator.relative(destination)
        if destination.exists() and not overwrite:
            return ToolResult(
                success=False,
                error=f"Destination already exists and overwrite is not enabled: {destination_rel}",
            )

        parent = destination.parent
        if not parent.exists():
            if not create_folders:
                return ToolResult(success=False, error=f"Destination folder does not exist: {validator.relative(parent)}")
            parent.mkdir(parents=True, exist_ok=True)
        elif not parent.is_dir():
            return ToolResult(success=False, error=f"Destination parent path is not a folder: {validator.relative(parent)}")

        try:
            shutil.move(str(source), str(destination))
        except OSError as e:
            log.error("Move failed", source=source_rel, destination=destination_rel, error=str(e))
            return ToolResult(success=False, error=f"Failed to move/rename file: {e}")

        return ToolResult(
            success=True,
            data={"action": "moved", "source_path": source_rel, "destination_path": destination_rel},
        )
