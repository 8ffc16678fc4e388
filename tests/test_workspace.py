"""
Tests for ChatWorkspace - boot, selection and optimistic metadata updates.
"""

import pytest
from types import SimpleNamespace

from chatsync.core.completion import CompletionGateway
from chatsync.core.exceptions import ChatNotFoundError, PersistenceError
from chatsync.core.workspace import ChatWorkspace, create_completion_gateway, create_repository
from chatsync.llm.gemini_provider import GeminiProxyProvider
from chatsync.storage.http_chat_repository import HttpChatRepository
from chatsync.storage.legacy_cache import LegacyChatCache
from chatsync.storage.local_chat_repository import LocalChatRepository
from chatsync.storage.local_storage import LocalStorage
from conftest import FakeProvider, FakeRepository, make_chat


def make_workspace(repository, provider=None, **kwargs):
    return ChatWorkspace(repository, CompletionGateway(provider), **kwargs)


def make_config(**overrides):
    values = dict(
        persistence_backend="local",
        chat_api_base_url="http://chat.test",
        chat_api_token="tok",
        chat_api_timeout=5.0,
        llm_provider="openai",
        llm_api_key="",
        llm_model=None,
        llm_base_url=None,
        llm_system_prompt=None,
        log_llm_calls=False,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestFactories:
    """Backend selection from configuration."""

    def test_local_repository(self, tmp_path):
        repo = create_repository(make_config(), LocalStorage(str(tmp_path)))
        assert isinstance(repo, LocalChatRepository)

    def test_http_repository(self, tmp_path):
        repo = create_repository(make_config(persistence_backend="http"), LocalStorage(str(tmp_path)))
        assert isinstance(repo, HttpChatRepository)
        assert repo.token == "tok"

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported"):
            create_repository(make_config(persistence_backend="s3"), LocalStorage(str(tmp_path)))

    def test_openai_without_key_is_unconfigured(self):
        assert create_completion_gateway(make_config()).configured() is False

    def test_gemini_proxy_uses_chat_api(self):
        gateway = create_completion_gateway(make_config(llm_provider="gemini_proxy"))
        assert isinstance(gateway.provider, GeminiProxyProvider)
        assert gateway.provider.base_url == "http://chat.test"
        assert gateway.provider.api_key == "tok"


class TestLoadChats:
    """Boot sequence."""

    @pytest.mark.asyncio
    async def test_load_and_adopt_location(self):
        repo = FakeRepository([make_chat("a"), make_chat("b")])
        workspace = make_workspace(repo)

        await workspace.load_chats("http://localhost/?chatId=b")

        assert {c.id for c in workspace.chats} == {"a", "b"}
        assert workspace.active_chat.id == "b"
        assert workspace.store.loading is False

    @pytest.mark.asyncio
    async def test_stale_location_dropped(self):
        workspace = make_workspace(FakeRepository([make_chat("a")]))
        await workspace.load_chats("http://localhost/?chatId=gone")
        assert workspace.active_chat is None
        assert "chatId" not in workspace.navigation.location

    @pytest.mark.asyncio
    async def test_failed_load_keeps_cached_chats(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        cache = LegacyChatCache(storage)
        seeded = FakeRepository([make_chat("cached", title="From cache")])
        await cache.save(await seeded.list())

        repo = FakeRepository()
        repo.fail["list"] = PersistenceError("Failed to load chats.")
        workspace = make_workspace(repo, cache=cache)

        await workspace.load_chats()

        assert [c.title for c in workspace.chats] == ["From cache"]
        assert workspace.load_error == "Failed to load chats."
        await workspace.close()


class TestSelection:
    """Selecting and starting chats."""

    @pytest.mark.asyncio
    async def test_select_and_new_chat(self):
        workspace = make_workspace(FakeRepository([make_chat("a")]))
        await workspace.load_chats()

        workspace.select_chat("a")
        assert workspace.navigation.requested_chat_id == "a"

        workspace.new_chat()
        assert workspace.active_chat is None
        assert workspace.navigation.requested_chat_id is None

    @pytest.mark.asyncio
    async def test_select_unknown(self):
        workspace = make_workspace(FakeRepository())
        await workspace.load_chats()
        with pytest.raises(ChatNotFoundError):
            workspace.select_chat("nope")

    @pytest.mark.asyncio
    async def test_send_selects_new_chat(self):
        workspace = make_workspace(FakeRepository(), FakeProvider(["Hi"]))
        await workspace.load_chats()

        outcome = await workspace.send("Hello there")
        await workspace.close()

        assert workspace.active_chat.id == outcome.chat_id
        assert workspace.navigation.requested_chat_id == outcome.chat_id


class TestMetadata:
    """Rename, archive, restore and delete."""

    @pytest.mark.asyncio
    async def test_rename_confirmed(self):
        repo = FakeRepository([make_chat("a", title="Old")])
        workspace = make_workspace(repo)
        await workspace.load_chats()

        chat = await workspace.rename_chat("a", "  New name  ")

        assert chat.title == "New name"
        assert repo.calls[-1] == ("update", "a", "New name", None)

    @pytest.mark.asyncio
    async def test_blank_rename_ignored(self):
        repo = FakeRepository([make_chat("a", title="Old")])
        workspace = make_workspace(repo)
        await workspace.load_chats()

        assert await workspace.rename_chat("a", "   ") is None
        assert workspace.store.get("a").title == "Old"
        assert repo.calls == [("list",)]

    @pytest.mark.asyncio
    async def test_failed_rename_rolls_back(self):
        repo = FakeRepository([make_chat("a", title="Old")])
        repo.fail["update"] = PersistenceError("Not allowed", status_code=403)
        workspace = make_workspace(repo)
        await workspace.load_chats()

        with pytest.raises(PersistenceError, match="Not allowed"):
            await workspace.rename_chat("a", "New")

        assert workspace.store.get("a").title == "Old"

    @pytest.mark.asyncio
    async def test_archive_and_restore(self):
        workspace = make_workspace(FakeRepository([make_chat("a")]))
        await workspace.load_chats()

        archived = await workspace.archive_chat("a")
        assert archived.archived is True
        assert [c.id for c in workspace.store.archived_chats] == ["a"]

        restored = await workspace.restore_chat("a")
        assert restored.archived is False
        assert restored.archived_at is None

    @pytest.mark.asyncio
    async def test_failed_archive_rolls_back(self):
        repo = FakeRepository([make_chat("a")])
        repo.fail["update"] = PersistenceError("down")
        workspace = make_workspace(repo)
        await workspace.load_chats()

        with pytest.raises(PersistenceError):
            await workspace.archive_chat("a")

        chat = workspace.store.get("a")
        assert chat.archived is False
        assert chat.archived_at is None

    @pytest.mark.asyncio
    async def test_delete_active_chat_clears_selection(self):
        workspace = make_workspace(FakeRepository([make_chat("a"), make_chat("b")]))
        await workspace.load_chats("http://localhost/?chatId=a")

        await workspace.delete_chat("a")

        assert [c.id for c in workspace.chats] == ["b"]
        assert workspace.active_chat is None
        assert "chatId" not in workspace.navigation.location

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_chat(self):
        repo = FakeRepository([make_chat("a")])
        repo.fail["delete"] = PersistenceError("Failed to delete chat.")
        workspace = make_workspace(repo)
        await workspace.load_chats()

        with pytest.raises(PersistenceError):
            await workspace.delete_chat("a")
        assert workspace.store.contains("a")
