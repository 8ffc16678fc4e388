"""Core module - chat state, normalization and the streaming engine."""

from .chat_store import ChatStore
from .exceptions import (
    ChatSyncError,
    PersistenceError,
    CompletionError,
    SendRejectedError,
    ChatNotFoundError,
)
from .normalize import normalize_chat, normalize_message, sort_chats_by_recency
from .titles import derive_title

__all__ = [
    'ChatStore',
    'ChatSyncError',
    'PersistenceError',
    'CompletionError',
    'SendRejectedError',
    'ChatNotFoundError',
    'normalize_chat',
    'normalize_message',
    'sort_chats_by_recency',
    'derive_title',
]
