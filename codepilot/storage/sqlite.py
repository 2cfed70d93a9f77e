"""Durable conversation tier backed by SQLite."""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from codepilot.exceptions import DurableStoreError
from codepilot.models.conversation import Conversation, StoredMessage, ToolExecution
from codepilot.models.messages import Message, message_from_record, message_metadata
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        title TEXT NOT NULL,
        state TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT NOT NULL,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tool_executions (
        id TEXT NOT NULL,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        tool_name TEXT NOT NULL,
        input TEXT NOT NULL,
        output TEXT,
        status TEXT NOT NULL,
        error TEXT,
        duration_ms INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS state_checkpoints (
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        state TEXT NOT NULL,
        step INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_updated_at ON conversations(updated_at)",
)


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


class SqliteConversationRepository:
    """Durable mirror of conversations, messages and tool executions.

    Writes are issued by the conversation store on a best-effort basis. The
    read methods serve out-of-session consumers such as resume tooling; the
    running assistant never reads back from here.
    """

    def __init__(self, db_path: Path | str):
        """Initialize the repository.

        Args:
            db_path: SQLite database file; parent directories are created on first use
        """
        self.db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized.

        Raises:
            DurableStoreError: If the database file cannot be opened or migrated
        """
        if self._db is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                db = await aiosqlite.connect(str(self.db_path))
                for statement in SCHEMA:
                    await db.execute(statement)
                await db.commit()
            except (OSError, aiosqlite.Error) as e:
                raise DurableStoreError(f"Cannot open conversation database {self.db_path}: {e}") from e
            self._db = db
        return self._db

    async def ping(self) -> bool:
        """Check that the database can be opened and queried."""
        try:
            db = await self._ensure_db()
            async with db.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except Exception as e:
            logger.warning(f"Durable store at {self.db_path} is not available: {e}")
            return False

    async def create_conversation(self, conversation: Conversation) -> None:
        db = await self._ensure_db()
        await db.execute(
            """
            INSERT INTO conversations (id, owner_id, title, state, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation.id,
                conversation.owner_id,
                conversation.title,
                json.dumps(conversation.state) if conversation.state is not None else None,
                int(conversation.is_active),
                conversation.created_at.isoformat(),
                conversation.updated_at.isoformat(),
            ),
        )
        await db.commit()

    async def append_messages(self, conversation_id: str, messages: list[StoredMessage]) -> None:
        db = await self._ensure_db()
        await db.executemany(
            """
            INSERT INTO messages (id, conversation_id, role, content, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    stored.id,
                    conversation_id,
                    stored.role,
                    stored.message.content,
                    json.dumps(message_metadata(stored.message)),
                    stored.created_at.isoformat(),
                )
                for stored in messages
            ],
        )
        await self._touch(db, conversation_id)
        await db.commit()

    async def append_tool_execution(self, execution: ToolExecution) -> None:
        db = await self._ensure_db()
        await db.execute(
            """
            INSERT INTO tool_executions
                (id, conversation_id, tool_name, input, output, status, error, duration_ms, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                execution.id,
                execution.conversation_id,
                execution.tool_name,
                json.dumps(execution.input, default=str),
                json.dumps(execution.output, default=str),
                execution.status.value,
                execution.error,
                execution.duration_ms,
                execution.created_at.isoformat(),
                execution.updated_at.isoformat(),
            ),
        )
        await db.commit()

    async def save_state(self, conversation_id: str, state: dict[str, Any], step: int) -> None:
        db = await self._ensure_db()
        state_json = json.dumps(state, default=str)
        now = _utcnow_iso()
        await db.execute(
            "UPDATE conversations SET state = ?, updated_at = ? WHERE id = ?",
            (state_json, now, conversation_id),
        )
        await db.execute(
            "INSERT INTO state_checkpoints (conversation_id, state, step, created_at) VALUES (?, ?, ?, ?)",
            (conversation_id, state_json, step, now),
        )
        await db.commit()

    async def load_messages(self, conversation_id: str, limit: int = 20) -> list[Message]:
        """Load the most recent messages of a conversation, oldest first."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT role, content, metadata, created_at FROM messages
            WHERE conversation_id = ?
            ORDER BY seq DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            message_from_record(row[0], row[1], json.loads(row[2]), datetime.fromisoformat(row[3]))
            for row in reversed(rows)
        ]

    async def list_conversations(self, limit: int = 10) -> list[dict[str, Any]]:
        """List recently updated conversations."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT c.id, c.owner_id, c.title, c.created_at, c.updated_at,
                   (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id)
            FROM conversations c
            ORDER BY c.updated_at DESC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            {
                "id": row[0],
                "owner_id": row[1],
                "title": row[2],
                "created_at": row[3],
                "updated_at": row[4],
                "message_count": row[5],
            }
            for row in rows
        ]

    async def load_tool_executions(self, conversation_id: str) -> list[dict[str, Any]]:
        """Load the tool execution log of a conversation in insertion order."""
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT id, tool_name, input, output, status, error, duration_ms, created_at
            FROM tool_executions WHERE conversation_id = ? ORDER BY rowid
            """,
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            {
                "id": row[0],
                "tool_name": row[1],
                "input": json.loads(row[2]),
                "output": json.loads(row[3]) if row[3] is not None else None,
                "status": row[4],
                "error": row[5],
                "duration_ms": row[6],
                "created_at": row[7],
            }
            for row in rows
        ]

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def _touch(self, db: aiosqlite.Connection, conversation_id: str) -> None:
        await db.execute("UPDATE conversations SET updated_at = ? WHERE id = ?", (_utcnow_iso(), conversation_id))
