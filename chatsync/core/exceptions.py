"""
Exception hierarchy for chat synchronization and streaming.
"""

from typing import Optional


class ChatSyncError(Exception):
    """Base class for all chatsync errors."""


class PersistenceError(ChatSyncError):
    """
    A Persistence Gateway call failed.

    ``message`` is the server-supplied explanation when the remote store sent
    one, otherwise a generic description of the failed operation.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CompletionError(ChatSyncError):
    """The Completion Gateway failed to produce a reply."""


class SendRejectedError(ChatSyncError):
    """A send was refused (another send is outstanding or chats are loading)."""


class ChatNotFoundError(ChatSyncError):
    """A chat id does not match any chat in the store."""

    def __init__(self, chat_id: str):
        super().__init__(f"Chat not found: {chat_id}")
        self.chat_id = chat_id
