"""Read tool for vault notes."""

import re
from typing import Any

from vault_agent.exceptions import VaultPathError
from vault_agent.logging import get_logger
from vault_agent.tools.path_validation import validator_for
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)

DEFAULT_MAX_SIZE = 1024 * 1024


def _clean_content(content: str) -> str:
    """Trim trailing spaces and collapse runs of blank lines, spaces and dashes."""
    lines = [line.rstrip() for line in content.split("\n")]
    cleaned = "\n".join(lines)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    cleaned = re.sub(r" {3,}", "  ", cleaned)
    cleaned = re.sub(r"-{6,}", "-----", cleaned)
    return cleaned.strip()


class FileReadTool(Tool):
    """Read note contents from the vault."""

    name = "file_read"
    description = (
        "Read file content from the vault. Use before editing or when content "
        "analysis is needed. Supports size limits for large files."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path relative to vault root",
            },
            "max_size": {
                "type": "number",
                "description": "Maximum file size in bytes (default 1 MiB)",
            },
        },
        "required": ["path"],
    }

    async def execute(self, path: str, max_size: int | None = None, **kwargs: Any) -> ToolResult:
        """Read a file.

        Args:
            path: Vault-relative path
            max_size: Optional size limit in bytes

        Returns:
            ToolResult with content, path and file stats
        """
        limit = int(max_size or DEFAULT_MAX_SIZE)
        validator = validator_for(kwargs)
        try:
            file_path = validator.to_absolute(path)
        except VaultPathError as e:
            return ToolResult(success=False, error=f"Path validation failed: {e}")

        relative = validator.relative(file_path)
        if not file_path.is_file():
            return ToolResult(success=False, error=f"File not found: {relative}")

        try:
            stat = file_path.stat()
            if stat.st_size > limit:
                return ToolResult(
                    success=False,
                    error=f"File too large ({stat.st_size} bytes, max {limit} bytes): {relative}",
                )
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Read failed", path=relative, error=str(e))
            return ToolResult(success=False, error=f"Failed to read file: {e}")

        log.debug("File content read", path=relative, size=len(content))
        return ToolResult(
            success=True,
            data={
                "content": _clean_content(content),
                "file_path": relative,
                "size": stat.st_size,
                "modified": stat.st_mtime,
                "extension": file_path.suffix.lstrip("."),
            },
        )
