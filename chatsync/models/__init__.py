"""Models module."""

from .chat import Message, Chat, SendMessageRequest, ChatUpdateRequest

__all__ = ['Message', 'Chat', 'SendMessageRequest', 'ChatUpdateRequest']
