"""
Completion Gateway - Produces assistant replies as a stream of events.

A reply is a finite sequence of ``ChunkEvent`` items terminated by exactly one
``CompleteEvent`` or ``ErrorEvent``. Providers that answer in one shot show up
as a single chunk followed by completion.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence, Union

from ..llm.base import LLMMessage, LLMProvider
from .exceptions import CompletionError
from .normalize import normalize_message

logger = logging.getLogger(__name__)

ChunkCallback = Callable[..., None]


@dataclass(frozen=True)
class ChunkEvent:
    text: str


@dataclass(frozen=True)
class CompleteEvent:
    text: str  # Full reply, trimmed


@dataclass(frozen=True)
class ErrorEvent:
    message: str


CompletionEvent = Union[ChunkEvent, CompleteEvent, ErrorEvent]


class CancellationToken:
    """Cooperative cancellation flag, checked between chunks."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class CompletionGateway:
    """
    Adapter between the chat engine and an ``LLMProvider``.

    A gateway without a provider is "not configured"; callers are expected to
    check ``configured()`` and fall back instead of streaming.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider],
        system_prompt: Optional[str] = None,
        log_calls: bool = True,
    ):
        self.provider = provider
        self.system_prompt = system_prompt
        self.log_calls = log_calls

    def configured(self) -> bool:
        return self.provider is not None

    def build_messages(self, prompt: str, history: Sequence[Any]) -> List[LLMMessage]:
        """
        Provider messages for ``prompt`` given the chat ``history``.

        The history normally already ends with the user's prompt, since the
        user message is persisted before the reply is requested; the prompt
        is only appended when it is missing.
        """
        messages: List[LLMMessage] = []
        if self.system_prompt:
            messages.append(LLMMessage.text("system", self.system_prompt))

        for record in history:
            message = normalize_message(record)
            if message.text.strip() and not message.is_error:
                messages.append(LLMMessage.text(message.role, message.text))

        last = messages[-1] if messages else None
        if prompt and not (last and last.role == "user" and last.content.strip() == prompt.strip()):
            messages.append(LLMMessage.text("user", prompt))
        return messages

    async def stream(
        self,
        prompt: str,
        history: Sequence[Any] = (),
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[CompletionEvent]:
        """
        Yield reply events for ``prompt``.

        Provider failures become a terminal ``ErrorEvent``; nothing is raised.
        When ``token`` is cancelled the stream stops without a terminal event.
        """
        if self.provider is None:
            yield ErrorEvent("Completion service not configured")
            return

        start_time = time.time()
        messages = self.build_messages(prompt, history)
        parts: List[str] = []

        try:
            async for chunk in self.provider.chat_completion_stream(messages):
                if token is not None and token.cancelled:
                    logger.info("Completion stream abandoned after cancellation")
                    return
                if chunk:
                    parts.append(chunk)
                    yield ChunkEvent(chunk)
        except Exception as e:
            logger.error(
                f"Completion failed: {e}",
                exc_info=True,
                extra={"extra_fields": {"provider": self.provider.name, "error": str(e)}}
            )
            yield ErrorEvent(str(e) or "Failed to fetch response.")
            return

        text = "".join(parts).strip()
        if self.log_calls:
            logger.info(
                "Completion finished",
                extra={"extra_fields": {
                    "provider": self.provider.name,
                    "chunks": len(parts),
                    "content_length": len(text),
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                }}
            )
        yield CompleteEvent(text)

    async def generate(
        self,
        prompt: str,
        history: Sequence[Any] = (),
        on_chunk: Optional[ChunkCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Callback-style wrapper around ``stream``.

        ``on_chunk(chunk, is_complete)`` receives every text chunk with
        ``is_complete=False`` and then ``(None, True)`` once. On failure it is
        called once as ``(None, True, error_message)`` and ``CompletionError``
        is raised.

        Returns:
            str: The full reply, trimmed
        """
        parts: List[str] = []
        async for event in self.stream(prompt, history, token):
            if isinstance(event, ChunkEvent):
                parts.append(event.text)
                if on_chunk:
                    on_chunk(event.text, False)
            elif isinstance(event, CompleteEvent):
                if on_chunk:
                    on_chunk(None, True)
                return event.text
            else:
                if on_chunk:
                    on_chunk(None, True, event.message)
                raise CompletionError(event.message)
        return "".join(parts).strip()
