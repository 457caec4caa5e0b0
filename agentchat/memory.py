"""Durable per-session key/value memory backed by SQLite (aiosqlite).

Four namespaces per session id: todos, checkpoints, conversation and
metadata. Values are stored as JSON; a missing key loads as ``[]`` (lists)
or ``None`` (metadata).
"""

import json
import logging
from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

import aiosqlite

from agentchat.models import Attachment, ChatMessage, Checkpoint, Todo

logger = logging.getLogger(__name__)

PREFIX = "@deep-agents:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS memory (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


def _key(session_id: str, bucket: str) -> str:
    # session ids are percent-encoded, so an encoded id never contains ":"
    return f"{PREFIX}{bucket}:{quote(session_id, safe='')}"


def _meta_key(session_id: str, name: str) -> str:
    return f"{_key(session_id, 'meta')}:{name}"


def _message_from_dict(data: dict[str, Any]) -> ChatMessage:
    attachments = [Attachment(**a) for a in data.get("attachments", [])]
    return ChatMessage(**{**data, "attachments": attachments})


class MemoryStore:
    """SQLite-backed memory. Connects per call; safe to share within one event loop."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._initialized = False

    async def _ensure_schema(self) -> None:
        if self._initialized:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
        self._initialized = True

    async def _get(self, key: str) -> Any:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT value FROM memory WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def _set(self, key: str, value: Any) -> None:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO memory (key, value, updated_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), datetime.now().isoformat()),
            )
            await db.commit()

    async def _update(self, key: str, change: Callable[[Any], Any]) -> None:
        """Read, change and write one key inside a single write transaction."""
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            # an uncommitted transaction is rolled back when the connection closes
            await db.execute("BEGIN IMMEDIATE")
            async with db.execute("SELECT value FROM memory WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
            value = change(json.loads(row[0]) if row else None)
            await db.execute(
                "INSERT OR REPLACE INTO memory (key, value, updated_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), datetime.now().isoformat()),
            )
            await db.execute("COMMIT")

    async def _delete(self, key: str) -> None:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM memory WHERE key = ?", (key,))
            await db.commit()

    # -- Todos

    async def save_todos(self, session_id: str, todos: list[Todo]) -> None:
        await self._set(_key(session_id, "todos"), [t.to_dict() for t in todos])

    async def load_todos(self, session_id: str) -> list[Todo]:
        raw = await self._get(_key(session_id, "todos"))
        return [Todo.from_dict(t) for t in raw or []]

    # -- Checkpoints

    async def save_checkpoint(self, session_id: str, checkpoint: Checkpoint) -> None:
        """Append ``checkpoint``; existing checkpoints are never rewritten."""
        await self._update(_key(session_id, "checkpoints"), lambda raw: (raw or []) + [checkpoint.to_dict()])

    async def list_checkpoints(self, session_id: str) -> list[Checkpoint]:
        raw = await self._get(_key(session_id, "checkpoints"))
        return [Checkpoint.from_dict(c) for c in raw or []]

    async def load_latest_checkpoint(self, session_id: str) -> Checkpoint | None:
        checkpoints = await self.list_checkpoints(session_id)
        return checkpoints[-1] if checkpoints else None

    async def delete_old_checkpoints(self, session_id: str, keep: int) -> None:
        """Retain only the ``keep`` most recent checkpoints."""
        await self._update(_key(session_id, "checkpoints"), lambda raw: (raw or [])[-keep:] if keep > 0 else [])

    # -- Conversation

    async def save_conversation(self, session_id: str, messages: list[ChatMessage]) -> None:
        await self._set(_key(session_id, "conversation"), [asdict(m) for m in messages])

    async def load_conversation(self, session_id: str) -> list[ChatMessage]:
        raw = await self._get(_key(session_id, "conversation"))
        return [_message_from_dict(m) for m in raw or []]

    # -- Metadata

    async def save_metadata(self, session_id: str, name: str, value: Any) -> None:
        await self._set(_meta_key(session_id, name), value)

    async def load_metadata(self, session_id: str, name: str) -> Any:
        return await self._get(_meta_key(session_id, name))

    async def delete_metadata(self, session_id: str, name: str) -> None:
        await self._delete(_meta_key(session_id, name))

    # -- Bulk

    async def clear(self, session_id: str) -> None:
        """Remove every namespace of one session."""
        await self._ensure_schema()
        keys = [_key(session_id, b) for b in ("todos", "checkpoints", "conversation")]
        meta_prefix = _key(session_id, "meta") + ":"
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany("DELETE FROM memory WHERE key = ?", [(k,) for k in keys])
            await db.execute(
                "DELETE FROM memory WHERE substr(key, 1, ?) = ?",
                (len(meta_prefix), meta_prefix),
            )
            await db.commit()
        logger.debug("Cleared memory for session %s", session_id)

    async def clear_all(self) -> None:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "DELETE FROM memory WHERE substr(key, 1, ?) = ?",
                (len(PREFIX), PREFIX),
            )
            await db.commit()
