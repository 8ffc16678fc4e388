"""
Legacy Chat Cache - A single JSON snapshot of the chat list.

The snapshot is read at boot so chats can be shown before (or without) the
remote store answering, and rewritten after every store mutation. Readers
must tolerate a missing, corrupt or foreign-shaped snapshot.
"""

import asyncio
import json
import logging
from typing import List, Optional

from ..core.chat_store import ChatStore
from ..core.normalize import normalize_chat
from ..models.chat import Chat
from .interface import StorageInterface

logger = logging.getLogger(__name__)


class LegacyChatCache:
    """
    Snapshot cache of the chat list.
    Writes triggered by store changes are coalesced: the latest snapshot always wins.
    """

    def __init__(self, storage: StorageInterface, path: str = "cache/chat_history_v1.json"):
        self.storage = storage
        self.path = path
        self._latest: Optional[List[Chat]] = None
        self._dirty = False
        self._task: Optional[asyncio.Task] = None

    async def load(self) -> List[Chat]:
        """Read the snapshot; anything unreadable yields an empty list."""
        content = await self.storage.load(self.path)
        if not content:
            return []
        try:
            raw = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(f"Ignoring corrupt chat cache at {self.path}")
            return []
        if not isinstance(raw, list):
            logger.warning(f"Ignoring chat cache with unexpected shape at {self.path}")
            return []

        chats = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            chat = normalize_chat(item)
            if chat.is_transient:
                continue
            if chat.streaming_message() is not None:
                # Snapshot taken mid-reply; that reply can no longer finish
                chat = chat.model_copy(update={
                    "messages": [m.model_copy(update={"is_streaming": False}) for m in chat.messages],
                })
            chats.append(chat)
        return chats

    async def save(self, chats: List[Chat]) -> bool:
        content = json.dumps(
            [chat.model_dump(mode="json", by_alias=True) for chat in chats],
            ensure_ascii=False,
        )
        return await self.storage.save(self.path, content)

    def attach(self, store: ChatStore):
        """Persist a snapshot whenever ``store`` changes. Returns the unsubscribe callable."""
        return store.subscribe(self._on_change)

    def _on_change(self, chats: List[Chat]) -> None:
        self._latest = chats
        self._dirty = True
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Store mutated outside an event loop
            asyncio.run(self._drain())
            return
        self._task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._dirty:
            self._dirty = False
            if not await self.save(self._latest or []):
                logger.warning(f"Failed to write chat cache to {self.path}")

    async def flush(self) -> None:
        """Wait until the latest snapshot has been written."""
        if self._task is not None:
            await self._task
