"""
Selection/Navigation Sync - Keeps the active chat and a shareable location in step.

Selecting a chat writes its id into a query parameter. On load the parameter
is adopted only if it names a chat in the store; once loading has finished,
a stale id is stripped instead of being resurrected.
"""

import logging
from typing import Optional

import httpx

from .chat_store import ChatStore

logger = logging.getLogger(__name__)


class NavigationSync:
    """Maps the store's active chat id to the ``param`` query parameter of a location."""

    def __init__(self, store: ChatStore, location: str = "http://localhost/", param: str = "chatId"):
        self.store = store
        self.param = param
        self._location = httpx.URL(location)

    @property
    def location(self) -> str:
        return str(self._location)

    @property
    def requested_chat_id(self) -> Optional[str]:
        """Chat id named by the current location, if any."""
        return self._location.params.get(self.param) or None

    def navigate(self, location: str) -> Optional[str]:
        """Load ``location`` (e.g. a shared link) and reconcile the selection."""
        self._location = httpx.URL(location)
        return self.reconcile()

    def select(self, chat_id: str) -> None:
        self.store.set_active(chat_id)
        self._location = self._location.copy_set_param(self.param, chat_id)

    def clear(self) -> None:
        """Drop the selection, e.g. to start composing a new chat."""
        self.store.set_active(None)
        self._location = self._location.copy_remove_param(self.param)

    def reconcile(self) -> Optional[str]:
        """
        Adopt the location's chat id if the store knows it.

        While the store is still loading an unknown id is left in place;
        afterwards it is removed and the selection cleared.
        """
        chat_id = self.requested_chat_id
        if not chat_id:
            self.store.set_active(None)
            return None

        if self.store.contains(chat_id):
            self.store.set_active(chat_id)
            return chat_id

        if not self.store.loading:
            logger.info(f"Dropping stale chat reference {chat_id}")
            self.clear()
        return None
