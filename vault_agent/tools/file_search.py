"""Search tool for finding notes by name or content."""

import asyncio
import re
from pathlib import Path
from typing import Any

from vault_agent.logging import get_logger
from vault_agent.tools.path_validation import is_hidden, validator_for
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "svg", "webp"}


def _matches_filter(path: Path, filter_type: str) -> bool:
    extension = path.suffix.lstrip(".").lower()
    if filter_type == "markdown":
        return extension == "md"
    if filter_type == "image":
        return extension in IMAGE_EXTENSIONS
    return True


class FileSearchTool(Tool):
    """Search vault files by name, type and optionally markdown content."""

    name = "file_search"
    description = "Searches files by name and type, with optional content search for markdown files."
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query; every word must match unless use_regex is set",
            },
            "filter_type": {
                "type": "string",
                "enum": ["markdown", "image", "all"],
                "description": "Type of files to include (default: markdown)",
            },
            "max_results": {
                "type": "number",
                "description": "Maximum number of results (default: 10)",
            },
            "search_content": {
                "type": "boolean",
                "description": "Also search inside markdown file contents",
            },
            "use_regex": {
                "type": "boolean",
                "description": "Treat the query as a case-insensitive regular expression",
            },
        },
        "required": [],
    }

    async def execute(
        self,
        query: str = "",
        filter_type: str = "markdown",
        max_results: int = 10,
        search_content: bool = False,
        use_regex: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        validator = validator_for(kwargs)
        query = str(query or "").strip()

        regex: re.Pattern[str] | None = None
        if query and use_regex:
            try:
                regex = re.compile(query, re.IGNORECASE)
            except re.error as e:
                return ToolResult(success=False, error=f"Invalid regular expression: {e}")
        words = [] if use_regex else query.lower().split()

        def matches(text: str) -> bool:
            if regex is not None:
                return bool(regex.search(text))
            lowered = text.lower()
            return all(word in lowered for word in words)

        def scan() -> list[dict[str, Any]]:
            found: list[dict[str, Any]] = []
            for file_path in sorted(validator.vault_root.rglob("*")):
                if len(found) >= max(1, int(max_results)):
                    break
                if not file_path.is_file():
                    continue
                relative = validator.relative(file_path)
                if is_hidden(relative) or not _matches_filter(file_path, filter_type):
                    continue
                hit = not query or matches(relative)
                if not hit and search_content and file_path.suffix.lower() == ".md":
                    try:
                        hit = matches(file_path.read_text(encoding="utf-8"))
                    except (OSError, UnicodeDecodeError):
                        hit = False
                if hit:
                    stat = file_path.stat()
                    found.append(
                        {
                            "path": relative,
                            "name": file_path.name,
                            "size": stat.st_size,
                            "modified": stat.st_mtime,
                        }
                    )
            return found

        try:
            files = await asyncio.to_thread(scan)
        except OSError as e:
            log.error("Search failed", query=query, error=str(e))
            return ToolResult(success=False, error=str(e))

        return ToolResult(
            success=True,
            data={"files": files, "count": len(files), "query": query, "filter_type": filter_type},
        )
