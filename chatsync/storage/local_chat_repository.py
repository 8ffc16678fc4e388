"""
Local Chat Repository - Chats stored as JSON documents on a StorageInterface.
Used as the default persistence backend when no remote chat API is configured.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, List, Optional, Sequence

from ..core.exceptions import PersistenceError
from ..core.normalize import normalize_chat, normalize_message, normalize_message_payload, utcnow
from ..models.chat import Chat
from .chat_repository import ChatRepository
from .interface import StorageInterface

logger = logging.getLogger(__name__)


class LocalChatRepository(ChatRepository):
    """
    Stores one ``chats/<id>.json`` document per chat.
    Read-modify-write cycles are serialized with a lock.
    """

    def __init__(self, storage: StorageInterface, chats_dir: str = "chats"):
        self.storage = storage
        self.chats_dir = chats_dir
        self._lock = asyncio.Lock()

    def _get_chat_path(self, chat_id: str) -> str:
        return f"{self.chats_dir}/{chat_id}.json"

    async def _load_chat(self, chat_id: str) -> Chat:
        content = await self.storage.load(self._get_chat_path(chat_id))
        if content is None:
            raise PersistenceError(f"Chat not found: {chat_id}", status_code=404)
        try:
            return normalize_chat(json.loads(content.decode('utf-8')))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Chat document is corrupt: {chat_id}", status_code=500) from e

    async def _save_chat(self, chat: Chat) -> Chat:
        content = json.dumps(chat.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)
        if not await self.storage.save(self._get_chat_path(chat.id), content):
            raise PersistenceError(f"Failed to save chat {chat.id}", status_code=500)
        return chat

    async def list(self) -> List[Chat]:
        files = await self.storage.list(self.chats_dir, pattern="*.json")
        chats = []
        for file_path in files:
            content = await self.storage.load(file_path)
            if not content:
                continue
            try:
                chats.append(normalize_chat(json.loads(content.decode('utf-8'))))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning(f"Skipping unreadable chat document {file_path}")
        return chats

    async def create(self, title: str, messages: Sequence[Any] = ()) -> Chat:
        now = utcnow()
        chat = Chat(
            id=uuid.uuid4().hex,
            title=title,
            created_at=now,
            updated_at=now,
            messages=[normalize_message(m) for m in normalize_message_payload(list(messages))],
        )
        async with self._lock:
            await self._save_chat(chat)
        logger.info(f"Chat created: {chat.id}")
        return chat

    async def append_messages(self, chat_id: str, messages: Sequence[Any]) -> Chat:
        payload = normalize_message_payload(list(messages))
        async with self._lock:
            chat = await self._load_chat(chat_id)
            updated = chat.model_copy(update={
                "messages": chat.messages + [normalize_message(m) for m in payload],
                "updated_at": utcnow(),
            })
            return await self._save_chat(updated)

    async def update(
        self,
        chat_id: str,
        title: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> Chat:
        async with self._lock:
            chat = await self._load_chat(chat_id)
            now = utcnow()
            changes: dict = {"updated_at": now}
            if title is not None:
                changes["title"] = title
            if archived is not None:
                changes["archived"] = archived
                changes["archived_at"] = now if archived else None
            return await self._save_chat(chat.model_copy(update=changes))

    async def delete(self, chat_id: str) -> bool:
        async with self._lock:
            if not await self.storage.delete(self._get_chat_path(chat_id)):
                raise PersistenceError(f"Chat not found: {chat_id}", status_code=404)
        logger.info(f"Chat deleted: {chat_id}")
        return True
