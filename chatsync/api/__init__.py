"""API module."""

from .chats import router as chats_router

__all__ = ['chats_router']
