"""Chat persistence hand-off.

Anonymous users keep their chats in a local JSON file. Signed-in users are
persisted by the server when a response finishes, so the client only reads
from the remote store. The first time a user signs in, chats saved locally
while anonymous are copied to the remote store and the local file is cleared.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
import httpx

from .events import EventBus, StatusChanged
from .models import Message, chat_title, deserialize_messages, unserializable

if TYPE_CHECKING:
    from .session import ChatSession

logger = logging.getLogger(__name__)


@dataclass
class LocalChat:
    """A chat stored on this machine."""

    id: str
    title: str = "New Chat"
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LocalChat":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            title=data.get("title", "New Chat"),
            created_at=data.get("createdAt") or 0,
            messages=deserialize_messages(data.get("messages", [])),
        )


class LocalChatStore:
    """JSON file of anonymous chats, newest first."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    async def list_chats(self) -> list[LocalChat]:
        """All stored chats, newest first."""
        try:
            async with aiofiles.open(self.path) as f:
                content = await f.read()
        except FileNotFoundError:
            return []

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Local chat store {self.path} is corrupted: {e}")
            return []

        chats = [LocalChat.from_dict(c) for c in data if isinstance(c, dict) and c.get("id")]
        return sorted(chats, key=lambda c: c.created_at, reverse=True)

    async def get(self, chat_id: str) -> LocalChat | None:
        return next((c for c in await self.list_chats() if c.id == chat_id), None)

    async def save(self, chat: LocalChat) -> None:
        """Insert or replace a chat by id."""
        chats = await self.list_chats()
        for i, existing in enumerate(chats):
            if existing.id == chat.id:
                chats[i] = chat
                break
        else:
            chats.append(chat)
        await self._write(chats)

    async def delete(self, chat_id: str) -> None:
        await self._write([c for c in await self.list_chats() if c.id != chat_id])

    async def clear(self) -> None:
        """Remove every local chat."""
        self.path.unlink(missing_ok=True)

    async def _write(self, chats: list[LocalChat]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.path, "w") as f:
            await f.write(json.dumps([c.to_dict() for c in chats], indent=2, default=unserializable))


class RemoteChatStore:
    """Client for the signed-in user's chats on the server.

    API:
    - GET  {url}?userId=...        -> [{id, title, createdAt, ...}]
    - GET  {url}/{id}?userId=...   -> {id, messages: <json string or list>} | 404
    - POST {url}/migrate           <- {userId, chats: [...]}
    """

    def __init__(self, url: str, http_client: httpx.AsyncClient | None = None):
        self.url = url.rstrip("/")
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    async def close(self) -> None:
        await self.client.aclose()

    async def list_chats(self, user_id: str) -> list[dict[str, Any]]:
        response = await self.client.get(self.url, params={"userId": user_id})
        response.raise_for_status()
        chats = response.json()
        return sorted(chats, key=lambda c: c.get("createdAt") or 0, reverse=True)

    async def get_chat(self, chat_id: str, user_id: str) -> list[Message] | None:
        response = await self.client.get(f"{self.url}/{chat_id}", params={"userId": user_id})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json() or {}
        return deserialize_messages(data.get("messages"))

    async def migrate(self, chats: list[LocalChat], user_id: str) -> None:
        body = {"userId": user_id, "chats": [c.to_dict() for c in chats]}
        response = await self.client.post(
            f"{self.url}/migrate",
            content=json.dumps(body, default=unserializable),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()


class PersistenceBridge:
    """Decides where a session's messages live and performs the one-time migration.

    Store failures are logged and swallowed here; they never reach the chat
    state machine.
    """

    def __init__(
        self,
        local: LocalChatStore,
        remote: RemoteChatStore | None = None,
        user_id: str | None = None,
    ):
        self.local = local
        self.remote = remote
        self.user_id = user_id
        self._migrated_for: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and self.remote is not None

    async def hydrate(self, chat_id: str) -> list[Message]:
        """Load a chat's stored messages from the store matching the auth state."""
        try:
            if self.is_authenticated:
                messages = await self.remote.get_chat(chat_id, self.user_id)
                return messages or []
            chat = await self.local.get(chat_id)
            return chat.messages if chat else []
        except (OSError, ValueError, httpx.HTTPError) as e:
            logger.error(f"Failed to load chat {chat_id}: {e}")
            return []

    async def on_messages_changed(self, chat_id: str, messages: list[Message]) -> None:
        """Save an anonymous user's chat locally. Signed-in chats are saved server-side."""
        if self.is_authenticated or not messages:
            return
        chat = LocalChat(id=chat_id, title=chat_title(messages), messages=messages)
        try:
            await self.local.save(chat)
        except OSError as e:
            logger.error(f"Failed to save chat {chat_id} locally: {e}")

    async def on_auth_changed(self, user_id: str | None) -> None:
        """Track sign-in/sign-out; migrate local chats once per sign-in."""
        self.user_id = user_id
        if user_id is None:
            self._migrated_for = None
            return
        if self._migrated_for == user_id or self.remote is None:
            return
        self._migrated_for = user_id
        await self._migrate(user_id)

    async def _migrate(self, user_id: str) -> None:
        try:
            remote_chats = await self.remote.list_chats(user_id)
            if remote_chats:
                # The account already has history; local anonymous chats are dropped.
                await self.local.clear()
                return

            local_chats = await self.local.list_chats()
            if not local_chats:
                return

            await self.remote.migrate(local_chats, user_id)
            await self.local.clear()
            logger.info(f"Migrated {len(local_chats)} local chats for {user_id}")
        except (OSError, ValueError, httpx.HTTPError) as e:
            logger.error(f"Chat migration failed for {user_id}: {e}")

    def attach(self, bus: EventBus, session: ChatSession) -> None:
        """Save the session whenever its chat status changes."""

        async def _on_status(event: StatusChanged) -> None:
            if event.session_id == session.id:
                await self.on_messages_changed(session.id, session.messages)

        bus.subscribe(_on_status, StatusChanged)
