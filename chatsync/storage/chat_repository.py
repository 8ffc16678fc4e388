"""
Chat Repository Interface - Contract for the remote store of record for chats.
Implementations: HttpChatRepository (REST backend) and LocalChatRepository
(documents on a StorageInterface).
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from ..models.chat import Chat


class ChatRepository(ABC):
    """
    Persistence gateway for chats.

    Every method returns chats already passed through ``normalize_chat`` and
    raises ``PersistenceError`` when the store cannot complete the call.
    Message payloads are filtered with ``normalize_message_payload`` before
    they are sent, so blank messages never reach the store.
    """

    @abstractmethod
    async def list(self) -> List[Chat]:
        """Return every chat of the current user."""
        pass

    @abstractmethod
    async def create(self, title: str, messages: Sequence[Any] = ()) -> Chat:
        """
        Create a chat.

        Args:
            title: Initial title
            messages: Initial messages (usually the first user message)

        Returns:
            Chat: The stored chat with its assigned id and timestamps
        """
        pass

    @abstractmethod
    async def append_messages(self, chat_id: str, messages: Sequence[Any]) -> Chat:
        """
        Append messages to a chat.

        Returns:
            Chat: The full updated chat as confirmed by the store
        """
        pass

    @abstractmethod
    async def update(
        self,
        chat_id: str,
        title: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> Chat:
        """Change chat metadata; fields left as None are untouched."""
        pass

    @abstractmethod
    async def delete(self, chat_id: str) -> bool:
        """Delete a chat permanently."""
        pass
