"""Chat history storage: in-memory and SQLite backends."""

import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from vault_agent.config import get_config
from vault_agent.logging import get_logger

log = get_logger(__name__)


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def chat_message(role: str, content: str, **extra: Any) -> dict[str, Any]:
    """Build a history entry.

    Assistant entries may carry ``tool_results`` (serialized
    ``ToolExecutionResult`` records), which the execution ledger reads back.
    """
    message: dict[str, Any] = {"role": role, "content": content, "timestamp": _utcnow_iso()}
    message.update(extra)
    return message


class HistoryStore(ABC):
    """Append-only transcript of one conversation."""

    @abstractmethod
    async def get_history(self) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def add_message(self, message: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryHistoryStore(HistoryStore):
    def __init__(self, messages: list[dict[str, Any]] | None = None):
        self._messages: list[dict[str, Any]] = [dict(m) for m in messages or []]

    async def get_history(self) -> list[dict[str, Any]]:
        return [dict(m) for m in self._messages]

    async def add_message(self, message: dict[str, Any]) -> None:
        self._messages.append(dict(message))

    async def clear(self) -> None:
        self._messages.clear()


class SqliteHistoryStore(HistoryStore):
    """History persisted in SQLite, one row per message."""

    def __init__(self, db_path: Path | str | None = None, conversation: str = "default"):
        """Initialize the store.

        Args:
            db_path: Optional database path override
            conversation: Name keying this transcript inside the database
        """
        if db_path is None:
            config = get_config()
            self.db_path = Path(config.session.path).expanduser()
        else:
            self.db_path = Path(db_path).expanduser()

        # Ensure directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conversation = conversation
        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized."""
        if self._db is None:
            self._db = await aiosqlite.connect(str(self.db_path))
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation, id)"
            )
            await self._db.commit()
        return self._db

    async def get_history(self) -> list[dict[str, Any]]:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT payload FROM messages WHERE conversation = ? ORDER BY id",
            (self.conversation,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    async def add_message(self, message: dict[str, Any]) -> None:
        db = await self._ensure_db()
        await db.execute(
            "INSERT INTO messages (conversation, payload, created_at) VALUES (?, ?, ?)",
            (self.conversation, json.dumps(message, default=str), _utcnow_iso()),
        )
        await db.commit()

    async def clear(self) -> None:
        db = await self._ensure_db()
        cursor = await db.execute(
            "DELETE FROM messages WHERE conversation = ?",
            (self.conversation,),
        )
        await db.commit()
        log.info("Cleared history", conversation=self.conversation, removed=cursor.rowcount)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None


def create_history_store(
    storage: str | None = None,
    path: Path | str | None = None,
    conversation: str = "default",
) -> HistoryStore:
    """Build the configured history backend (``sqlite`` or ``memory``)."""
    storage = storage or get_config().session.storage
    if storage == "memory":
        return InMemoryHistoryStore()
    if storage == "sqlite":
        return SqliteHistoryStore(db_path=path, conversation=conversation)
    raise ValueError(f"Unknown history storage: {storage}")
