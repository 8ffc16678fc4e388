"""
Chat Store - In-memory authoritative collection of chats for one user context.

The store is the only mutation surface for chat state. Every mutation keeps
records normalized, ids unique and the collection in recency order, then
notifies subscribers (e.g. the legacy cache) with a snapshot.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..models.chat import Chat, Message
from .normalize import normalize_chat, normalize_message, sort_chats_by_recency, utcnow
from .titles import MAX_RENAME_LENGTH, clean_title

logger = logging.getLogger(__name__)

Listener = Callable[[List[Chat]], None]


class ChatStore:
    """
    Holds the chat list and the active selection.

    Readers get copies; nothing outside the store mutates its chats.
    """

    def __init__(self, chats: Optional[Iterable[Any]] = None):
        self._chats: List[Chat] = []
        self._active_chat_id: Optional[str] = None
        self._listeners: List[Listener] = []
        # True while the initial chat list is being fetched
        self.loading = False
        if chats:
            self._chats = sort_chats_by_recency(self._dedupe(normalize_chat(c) for c in chats))

    # ---- read accessors ----

    @property
    def chats(self) -> List[Chat]:
        return list(self._chats)

    @property
    def visible_chats(self) -> List[Chat]:
        return [c for c in self._chats if not c.archived]

    @property
    def archived_chats(self) -> List[Chat]:
        return [c for c in self._chats if c.archived]

    def get(self, chat_id: Optional[str]) -> Optional[Chat]:
        if not chat_id:
            return None
        for chat in self._chats:
            if chat.id == chat_id:
                return chat
        return None

    def contains(self, chat_id: Optional[str]) -> bool:
        return self.get(chat_id) is not None

    @property
    def active_chat_id(self) -> Optional[str]:
        return self._active_chat_id

    @property
    def active_chat(self) -> Optional[Chat]:
        return self.get(self._active_chat_id)

    def set_active(self, chat_id: Optional[str]) -> None:
        self._active_chat_id = chat_id or None

    # ---- subscription ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for change snapshots; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- mutations ----

    def replace_all(self, records: Iterable[Any]) -> List[Chat]:
        """Replace the whole collection, e.g. with the list fetched at boot."""
        chats = []
        for record in records:
            chat = normalize_chat(record)
            if chat.is_transient:
                logger.warning("Skipping chat record without an id")
                continue
            chats.append(chat)
        self._commit(self._dedupe(chats))
        return self.chats

    def upsert(self, record: Any) -> Chat:
        """Replace the chat with the same id, or prepend it when new."""
        chat = normalize_chat(record)
        if chat.is_transient:
            raise ValueError("Cannot store a chat without a confirmed id")

        if self.contains(chat.id):
            chats = [chat if c.id == chat.id else c for c in self._chats]
        else:
            chats = [chat] + self._chats
        self._commit(chats)
        return chat

    def reconcile(self, record: Any) -> Chat:
        """
        Replace local state with the version confirmed by the remote store.

        A local placeholder that is still streaming is carried over, since the
        remote copy cannot know about it yet.
        """
        confirmed = normalize_chat(record)
        local = self.get(confirmed.id)
        streaming = local.streaming_message() if local else None
        if streaming is not None and confirmed.streaming_message() is None:
            confirmed = confirmed.model_copy(update={"messages": confirmed.messages + [streaming]})
        return self.upsert(confirmed)

    def append_message(self, chat_id: Optional[str], record: Any) -> Optional[Message]:
        """
        Append a message and bump the chat's ``updated_at``.

        Unknown ids are ignored: late callbacks may reference a chat that was
        deleted in the meantime.
        """
        chat = self.get(chat_id)
        if chat is None:
            logger.debug(f"append_message ignored for unknown chat {chat_id}")
            return None

        message = normalize_message(record)
        if message.is_streaming and chat.streaming_message() is not None:
            raise ValueError(f"Chat {chat_id} already has a streaming message")

        self._replace(chat.model_copy(update={
            "messages": chat.messages + [message],
            "updated_at": utcnow(),
        }))
        return message

    def update_streaming_message(
        self,
        chat_id: Optional[str],
        update: Callable[[Message], Dict[str, Any]],
    ) -> Optional[Message]:
        """
        Apply ``update`` to the chat's streaming message.

        ``update`` receives the current message and returns the fields to
        change. Returns the new message, or None when the chat or its
        streaming message is gone.
        """
        chat = self.get(chat_id)
        if chat is None:
            return None
        for index, message in enumerate(chat.messages):
            if message.is_streaming:
                return self._replace_message(chat, index, update(message))
        return None

    def update_message(
        self,
        chat_id: Optional[str],
        index: int,
        changes: Dict[str, Any],
    ) -> Optional[Message]:
        """Replace fields of the message at ``index``; None if it does not exist."""
        chat = self.get(chat_id)
        if chat is None or not 0 <= index < len(chat.messages):
            return None
        return self._replace_message(chat, index, changes)

    def remove(self, chat_id: Optional[str]) -> bool:
        """Delete a chat; clears the active selection if it pointed there."""
        if not self.contains(chat_id):
            return False
        if self._active_chat_id == chat_id:
            self._active_chat_id = None
        self._commit([c for c in self._chats if c.id != chat_id])
        return True

    def set_archived(self, chat_id: Optional[str], archived: bool) -> Optional[Chat]:
        chat = self.get(chat_id)
        if chat is None:
            return None
        now = utcnow()
        updated = chat.model_copy(update={
            "archived": archived,
            "archived_at": now if archived else None,
            "updated_at": now,
        })
        self._replace(updated)
        return updated

    def rename(self, chat_id: Optional[str], title: Optional[str]) -> Optional[Chat]:
        """Rename a chat; blank titles are ignored."""
        chat = self.get(chat_id)
        cleaned = clean_title(title, MAX_RENAME_LENGTH)
        if chat is None or cleaned is None:
            return None
        updated = chat.model_copy(update={"title": cleaned, "updated_at": utcnow()})
        self._replace(updated)
        return updated

    # ---- internals ----

    def _replace_message(self, chat: Chat, index: int, changes: Dict[str, Any]) -> Message:
        current = chat.messages[index]
        message = normalize_message({**current.model_dump(), **changes})
        messages = list(chat.messages)
        messages[index] = message
        self._replace(chat.model_copy(update={"messages": messages}))
        return message

    def _replace(self, chat: Chat) -> None:
        self._commit([chat if c.id == chat.id else c for c in self._chats])

    def _commit(self, chats: List[Chat]) -> None:
        self._chats = sort_chats_by_recency(chats)
        snapshot = self.chats
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Chat store listener failed")

    @staticmethod
    def _dedupe(chats: Iterable[Chat]) -> List[Chat]:
        seen = set()
        unique = []
        for chat in chats:
            if chat.id in seen:
                continue
            seen.add(chat.id)
            unique.append(chat)
        return unique
