"""
Chat Workspace - Composition root for one user context.

Wires the chat store, persistence gateway, completion gateway, streaming
controller, navigation sync and legacy cache together, and exposes the
user-level chat operations.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ..llm.factory import create_llm_provider
from ..models.chat import Chat
from ..storage import (
    ChatRepository,
    HttpChatRepository,
    LegacyChatCache,
    LocalChatRepository,
    LocalStorage,
)
from .chat_store import ChatStore
from .completion import CompletionGateway
from .exceptions import ChatNotFoundError, PersistenceError
from .navigation import NavigationSync
from .streaming import DEFAULT_FALLBACK_MESSAGE, StreamingController, StreamOutcome
from .titles import MAX_RENAME_LENGTH, clean_title

logger = logging.getLogger(__name__)


def create_repository(config: Any, storage: LocalStorage) -> ChatRepository:
    """Build the persistence gateway selected by ``config.persistence_backend``."""
    if config.persistence_backend == "http":
        return HttpChatRepository(
            base_url=config.chat_api_base_url,
            token=config.chat_api_token,
            timeout=config.chat_api_timeout,
        )
    elif config.persistence_backend == "local":
        return LocalChatRepository(storage)
    else:
        raise ValueError(f"Unsupported persistence backend: {config.persistence_backend}")


def create_completion_gateway(config: Any) -> CompletionGateway:
    if config.llm_provider == "gemini_proxy":
        provider = create_llm_provider(
            provider="gemini_proxy",
            api_key=config.chat_api_token,
            model=config.llm_model,
            base_url=config.llm_base_url or config.chat_api_base_url,
        )
    else:
        provider = create_llm_provider(
            provider=config.llm_provider,
            api_key=config.llm_api_key,
            model=config.llm_model,
            base_url=config.llm_base_url,
        )
    return CompletionGateway(
        provider,
        system_prompt=config.llm_system_prompt,
        log_calls=config.log_llm_calls,
    )


class ChatWorkspace:
    """
    All chat state and operations for one user context.

    Metadata changes (rename, archive, restore) are applied to the store
    optimistically and then replaced by the confirmed version; if the
    persistence gateway fails the previous state is restored and the
    ``PersistenceError`` propagates.
    """

    def __init__(
        self,
        repository: ChatRepository,
        completion: CompletionGateway,
        store: Optional[ChatStore] = None,
        cache: Optional[LegacyChatCache] = None,
        location: str = "http://localhost/",
        query_param: str = "chatId",
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
    ):
        self.store = store or ChatStore()
        self.repository = repository
        self.completion = completion
        self.cache = cache
        self.navigation = NavigationSync(self.store, location, query_param)
        self.controller = StreamingController(
            self.store,
            repository,
            completion,
            fallback_message=fallback_message,
            on_select=self.navigation.select,
        )
        self.load_error: Optional[str] = None
        if cache is not None:
            cache.attach(self.store)

    @classmethod
    def from_settings(cls, config: Any) -> "ChatWorkspace":
        storage = LocalStorage(config.local_storage_path)
        cache = LegacyChatCache(storage, config.legacy_cache_path) if config.legacy_cache_enabled else None
        return cls(
            repository=create_repository(config, storage),
            completion=create_completion_gateway(config),
            cache=cache,
            location=config.base_location,
            query_param=config.chat_query_param,
            fallback_message=config.completion_fallback_message,
        )

    # ---- read accessors ----

    @property
    def chats(self) -> List[Chat]:
        return self.store.chats

    @property
    def active_chat(self) -> Optional[Chat]:
        return self.store.active_chat

    @property
    def is_loading(self) -> bool:
        return self.store.loading or self.controller.is_loading

    # ---- lifecycle ----

    async def load_chats(self, location: Optional[str] = None) -> List[Chat]:
        """
        Boot: show cached chats, fetch the list of record, then reconcile the
        location's chat id. A failed fetch keeps whatever the cache held.
        """
        self.store.loading = True
        self.load_error = None
        try:
            if self.cache is not None:
                cached = await self.cache.load()
                if cached:
                    self.store.replace_all(cached)
                    logger.info(f"Loaded {len(cached)} chats from local cache")

            chats = await self.repository.list()
            self.store.replace_all(chats)
            logger.info(f"Loaded {len(chats)} chats")
        except PersistenceError as e:
            logger.error(f"Failed to load chats: {e.message}")
            self.load_error = e.message or "Failed to load chats."
        finally:
            self.store.loading = False

        if location is not None:
            self.navigation.navigate(location)
        else:
            self.navigation.reconcile()
        return self.store.chats

    async def close(self) -> None:
        """Wait for background reply persistence and the last cache write."""
        await self.controller.drain()
        if self.cache is not None:
            await self.cache.flush()

    # ---- selection ----

    def new_chat(self) -> None:
        self.navigation.clear()

    def select_chat(self, chat_id: str) -> Chat:
        chat = self._require(chat_id)
        self.navigation.select(chat_id)
        return chat

    # ---- messaging ----

    async def send(self, text: str) -> Optional[StreamOutcome]:
        return await self.controller.send(text)

    def send_stream(self, text: str) -> AsyncIterator[Dict[str, Any]]:
        return self.controller.send_stream(text)

    def cancel(self) -> bool:
        return self.controller.cancel()

    # ---- metadata ----

    async def rename_chat(self, chat_id: str, title: str) -> Optional[Chat]:
        """Rename a chat; blank titles are ignored and return None."""
        cleaned = clean_title(title, MAX_RENAME_LENGTH)
        if cleaned is None:
            return None
        previous = self._require(chat_id)
        self.store.rename(chat_id, cleaned)
        return await self._confirm(previous, self.repository.update(chat_id, title=cleaned))

    async def archive_chat(self, chat_id: str) -> Chat:
        previous = self._require(chat_id)
        self.store.set_archived(chat_id, True)
        return await self._confirm(previous, self.repository.update(chat_id, archived=True))

    async def restore_chat(self, chat_id: str) -> Chat:
        previous = self._require(chat_id)
        self.store.set_archived(chat_id, False)
        return await self._confirm(previous, self.repository.update(chat_id, archived=False))

    async def delete_chat(self, chat_id: str) -> None:
        self._require(chat_id)
        await self.repository.delete(chat_id)
        was_active = self.store.active_chat_id == chat_id
        self.store.remove(chat_id)
        if was_active:
            self.navigation.clear()
        logger.info(f"Chat {chat_id} deleted")

    # ---- internals ----

    def _require(self, chat_id: str) -> Chat:
        chat = self.store.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        return chat

    async def _confirm(self, previous: Chat, update) -> Chat:
        try:
            confirmed = await update
        except PersistenceError:
            # Roll back metadata only; messages may have moved on meanwhile
            current = self.store.get(previous.id)
            if current is not None:
                self.store.upsert(current.model_copy(update={
                    "title": previous.title,
                    "archived": previous.archived,
                    "archived_at": previous.archived_at,
                    "updated_at": previous.updated_at,
                }))
            raise
        return self.store.reconcile(confirmed)


# Workspace serving the HTTP API
_workspace: Optional[ChatWorkspace] = None


def init_workspace(workspace: ChatWorkspace) -> None:
    """Install the workspace used by the API routes."""
    global _workspace
    _workspace = workspace


def get_workspace() -> ChatWorkspace:
    """
    Get the API's workspace.

    Raises:
        RuntimeError: If init_workspace() has not been called
    """
    if _workspace is None:
        raise RuntimeError("Chat workspace not initialized. Call init_workspace() first.")
    return _workspace
