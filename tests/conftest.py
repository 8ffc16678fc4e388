"""
Shared test fixtures and configuration.
"""

import pytest
import os

# Set test environment variables before importing app modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/chatsync_test_data")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LEGACY_CACHE_ENABLED", "false")
os.environ["LLM_API_KEY"] = ""

from chatsync.core.chat_store import ChatStore
from chatsync.core.completion import CompletionGateway


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_chat(chat_id, title="Chat", updated_at="2024-01-01T00:00:00Z", messages=None, **extra):
    """Build a raw chat record the way the remote store sends it."""
    record = {
        "_id": chat_id,
        "title": title,
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": updated_at,
        "messages": messages or [],
    }
    record.update(extra)
    return record


class FakeRepository:
    """
    In-memory ChatRepository double.

    ``fail`` maps a method name to the exception it should raise; ``gate``
    maps a method name to an asyncio.Event the call waits on first.
    """

    def __init__(self, chats=None):
        self.chats = {c["_id"]: dict(c, messages=list(c.get("messages", []))) for c in (chats or [])}
        self.calls = []
        self.fail = {}
        self.gate = {}
        self._next = 0

    async def _enter(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.gate:
            await self.gate[name].wait()
        if name in self.fail:
            raise self.fail[name]

    def _chat(self, chat_id):
        from chatsync.core.normalize import normalize_chat
        from chatsync.core.exceptions import PersistenceError
        if chat_id not in self.chats:
            raise PersistenceError(f"Chat not found: {chat_id}", status_code=404)
        return normalize_chat(self.chats[chat_id])

    async def list(self):
        await self._enter("list")
        from chatsync.core.normalize import normalize_chat
        return [normalize_chat(c) for c in self.chats.values()]

    async def create(self, title, messages=()):
        await self._enter("create", title, list(messages))
        self._next += 1
        chat_id = f"chat-{self._next}"
        self.chats[chat_id] = {
            "_id": chat_id,
            "title": title,
            "createdAt": f"2030-01-01T00:00:{self._next:02d}Z",
            "updatedAt": f"2030-01-01T00:00:{self._next:02d}Z",
            "messages": [dict(m) for m in messages],
        }
        return self._chat(chat_id)

    async def append_messages(self, chat_id, messages):
        await self._enter("append_messages", chat_id, list(messages))
        chat = self._chat(chat_id)
        self.chats[chat_id]["messages"] = [m.model_dump() for m in chat.messages] + [dict(m) for m in messages]
        return self._chat(chat_id)

    async def update(self, chat_id, title=None, archived=None):
        await self._enter("update", chat_id, title, archived)
        self._chat(chat_id)
        if title is not None:
            self.chats[chat_id]["title"] = title
        if archived is not None:
            self.chats[chat_id]["archived"] = archived
            self.chats[chat_id]["archivedAt"] = "2030-02-01T00:00:00Z" if archived else None
        return self._chat(chat_id)

    async def delete(self, chat_id):
        await self._enter("delete", chat_id)
        self._chat(chat_id)
        del self.chats[chat_id]
        return True


class FakeProvider:
    """LLMProvider double yielding preset chunks, optionally waiting on a gate per chunk."""

    name = "fake"

    def __init__(self, chunks=(), error=None, gate=None):
        self.chunks = list(chunks)
        self.error = error
        self.gate = gate
        self.received = None

    async def chat_completion_stream(self, messages, temperature=None, max_tokens=None, **kwargs):
        self.received = messages
        for chunk in self.chunks:
            if self.gate is not None:
                await self.gate.get()
            yield chunk
        if self.error is not None:
            raise self.error


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def store():
    return ChatStore()


@pytest.fixture
def unconfigured_gateway():
    return CompletionGateway(None)
