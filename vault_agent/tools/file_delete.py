"""Delete tool; moves notes to the vault trash unless told otherwise."""

import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from vault_agent.exceptions import VaultPathError
from vault_agent.logging import get_logger
from vault_agent.tools.path_validation import validator_for
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class FileDeleteTool(Tool):
    """Delete files or folders from the vault."""

    name = "file_delete"
    description = (
        "Delete files/folders safely. Moves to .trash by default (recoverable). "
        "Requires confirm_deletion=true."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File/folder path relative to vault root"},
            "confirm_deletion": {
                "type": "boolean",
                "description": "Required safety confirmation for deletions",
            },
            "use_trash": {
                "type": "boolean",
                "description": "Move to .trash instead of permanent deletion (default true)",
            },
        },
        "required": ["path"],
    }

    def __init__(self, trash_dir: str = ".trash"):
        self.trash_dir = trash_dir

    def _trash_destination(self, vault_root: Path, relative: str) -> Path:
        destination = vault_root / self.trash_dir / relative
        if destination.exists():
            stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
            destination = destination.with_name(f"{destination.stem}-{stamp}{destination.suffix}")
        return destination

    async def execute(
        self,
        path: str,
        confirm_deletion: bool = True,
        use_trash: bool = True,
        **kwargs: Any,
    ) -> ToolResult:
        validator = validator_for(kwargs)
        try:
            target = validator.to_absolute(path)
        except VaultPathError as e:
            return ToolResult(success=False, error=f"Path validation failed: {e}")

        relative = validator.relative(target)
        if not relative:
            return ToolResult(success=False, error="Refusing to delete the vault root")
        if confirm_deletion is not True:
            return ToolResult(
                success=False,
                error="confirm_deletion must be set to true to proceed with deletion. This is a safety measure.",
            )
        if not target.exists():
            return ToolResult(success=False, error=f"File or folder not found: {relative}")

        kind = "folder" if target.is_dir() else "file"
        try:
            if use_trash:
                destination = self._trash_destination(validator.vault_root, relative)
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(target), str(destination))
                log.info("Moved to trash", path=relative, destination=str(destination))
                return ToolResult(
                    success=True,
                    data={
                        "action": "trashed",
                        "type": kind,
                        "path": relative,
                        "trash_path": validator.relative(destination),
                    },
                )
            if kind == "folder":
                shutil.rmtree(target)
            else:
                target.unlink()
        except OSError as e:
            log.error("Delete failed", path=relative, error=str(e))
            return ToolResult(success=False, error=f"Failed to delete {kind}: {e}")

        log.info("Deleted permanently", path=relative)
        return ToolResult(success=True, data={"action": "deleted", "type": kind, "path": relative})
