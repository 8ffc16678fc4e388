"""Storage module - persistence gateways for chats and the local snapshot cache."""

from .interface import StorageInterface
from .local_storage import LocalStorage
from .chat_repository import ChatRepository
from .local_chat_repository import LocalChatRepository
from .http_chat_repository import HttpChatRepository
from .legacy_cache import LegacyChatCache

__all__ = [
    'StorageInterface',
    'LocalStorage',
    'ChatRepository',
    'LocalChatRepository',
    'HttpChatRepository',
    'LegacyChatCache',
]
