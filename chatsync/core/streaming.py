"""
Streaming Controller - Runs one send/reply cycle at a time.

Cycle:
    IDLE -> AWAITING_USER_PERSIST -> STREAMING_REPLY -> FINALIZING | CANCELLED | FAILED -> IDLE

The user message is persisted (awaited) before the assistant placeholder is
inserted, so the history handed to the completion gateway always contains it.
A single loading guard serializes sends across all chats. Cancellation is
cooperative: the cycle's token is checked at every chunk boundary.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from ..models.chat import Chat
from ..storage.chat_repository import ChatRepository
from .chat_store import ChatStore
from .completion import CancellationToken, ChunkEvent, CompleteEvent, CompletionGateway, ErrorEvent
from .exceptions import PersistenceError, SendRejectedError
from .logging_config import LoggerAdapter, truncate_large_data
from .normalize import display_time
from .titles import derive_title

logger = logging.getLogger(__name__)

CANCELLED_SUFFIX = " (Cancelled)"
SAVE_FAILED_NOTE = "\n\n(Failed to save to server)"
DEFAULT_FALLBACK_MESSAGE = "Completion service not configured."


class StreamState(str, Enum):
    IDLE = "idle"
    AWAITING_USER_PERSIST = "awaiting_user_persist"
    STREAMING_REPLY = "streaming_reply"
    FINALIZING = "finalizing"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class StreamOutcome:
    """Result of one send. ``state`` is FINALIZING for a delivered reply."""
    chat_id: str
    state: StreamState
    text: str
    fallback: bool = False


@dataclass
class _Cycle:
    chat_id: str
    token: CancellationToken
    index: int  # Position of the placeholder in the chat's messages
    time: str
    parts: List[str] = field(default_factory=list)
    terminal: bool = False
    text: str = ""


class StreamingController:
    """
    Orchestrates request/response cycles against the completion gateway.

    Args:
        store: Chat store to mutate
        repository: Persistence gateway for user and assistant messages
        completion: Completion gateway producing replies
        fallback_message: Reply shown when the completion gateway is not configured
        on_select: Called with the id of a chat created by a send
    """

    def __init__(
        self,
        store: ChatStore,
        repository: ChatRepository,
        completion: CompletionGateway,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
        on_select: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.repository = repository
        self.completion = completion
        self.fallback_message = fallback_message
        self.on_select = on_select
        self.state = StreamState.IDLE
        self.is_loading = False
        self._cycle: Optional[_Cycle] = None
        self._token: Optional[CancellationToken] = None
        self._pending: Set[asyncio.Task] = set()

    # ---- public API ----

    async def send(self, text: str) -> Optional[StreamOutcome]:
        """
        Send ``text`` and wait for the reply to reach a terminal state.

        Returns None for blank input. Raises ``SendRejectedError`` while
        another send is outstanding and ``PersistenceError`` when the user
        message could not be saved.
        """
        outcome = None
        async for event in self.send_stream(text):
            if event["type"] in ("done", "cancelled", "error"):
                outcome = StreamOutcome(
                    chat_id=event["chatId"],
                    state={
                        "done": StreamState.FINALIZING,
                        "cancelled": StreamState.CANCELLED,
                        "error": StreamState.FAILED,
                    }[event["type"]],
                    text=event["text"],
                    fallback=event.get("fallback", False),
                )
        return outcome

    async def send_stream(self, text: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Send ``text`` and yield progress events.

        Events: ``chat`` (target chat confirmed), ``content`` (one chunk),
        then exactly one of ``done``, ``cancelled`` or ``error``.
        """
        prompt = (text or "").strip()
        if not prompt:
            return
        if self.is_loading:
            raise SendRejectedError("A reply is already in progress.")
        if self.store.loading:
            raise SendRejectedError("Chats are still loading. Please try again in a moment.")

        self.is_loading = True
        token = CancellationToken()
        self._token = token
        self._set_state(StreamState.AWAITING_USER_PERSIST)

        cycle: Optional[_Cycle] = None
        try:
            chat = await self._persist_user_message(prompt)
            yield {"type": "chat", "chatId": chat.id, "title": chat.title}

            if not self.completion.configured():
                if token.cancelled:
                    self._release()
                    yield {"type": "cancelled", "chatId": chat.id, "text": ""}
                else:
                    yield self._reply_with_fallback(chat.id)
                return

            cycle = self._start_cycle(chat, token)
        finally:
            # Until a cycle exists, any exit from here releases the guard
            if cycle is None and self._token is token:
                self._release()

        log = LoggerAdapter(logger, {"chat_id": chat.id})

        try:
            if token.cancelled:
                self._finish_cancelled(cycle)
                yield self._terminal_event("cancelled", cycle)
                return

            async for event in self.completion.stream(prompt, chat.messages, token):
                if token.cancelled:
                    self._finish_cancelled(cycle)
                    yield self._terminal_event("cancelled", cycle)
                    return

                if isinstance(event, ErrorEvent):
                    self._finish_failed(cycle, event.message)
                    yield self._terminal_event("error", cycle, error=event.message)
                    return

                if isinstance(event, ChunkEvent):
                    cycle.parts.append(event.text)
                    self.store.update_streaming_message(
                        cycle.chat_id, lambda m, chunk=event.text: {"text": m.text + chunk}
                    )
                    yield {"type": "content", "content": event.text}

                elif isinstance(event, CompleteEvent):
                    self._finish_completed(cycle, "".join(cycle.parts).strip())
                    yield self._terminal_event("done", cycle)
                    return

            # The gateway only stops without a terminal event after cancellation
            if token.cancelled:
                self._finish_cancelled(cycle)
                yield self._terminal_event("cancelled", cycle)
            else:
                self._finish_completed(cycle, "".join(cycle.parts).strip())
                yield self._terminal_event("done", cycle)

        except Exception as e:
            log.error(f"Reply failed: {e}", exc_info=True)
            message = str(e) or "Failed to fetch response."
            self._finish_failed(cycle, message)
            yield self._terminal_event("error", cycle, error=message)

        finally:
            # Consumer went away mid-stream
            if not cycle.terminal:
                log.info("Reply stream closed before completion; cancelling")
                token.cancel()
                self._finish_cancelled(cycle)

    def cancel(self) -> bool:
        """
        Cancel the outstanding reply.

        The placeholder is finalized immediately with the cancelled suffix;
        whatever the gateway still delivers for this cycle is ignored.
        Returns False when there was nothing to cancel.
        """
        token = self._token
        if token is None or token.cancelled:
            return False
        token.cancel()
        cycle = self._cycle
        if cycle is not None and cycle.token is token:
            self._finish_cancelled(cycle)
        logger.info("Reply cancelled")
        return True

    async def drain(self) -> None:
        """Wait for outstanding background persistence of assistant replies."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ---- cycle steps ----

    async def _persist_user_message(self, prompt: str) -> Chat:
        user_message = {"role": "user", "text": prompt, "time": display_time()}

        chat_id = self.store.active_chat_id
        if chat_id and not self.store.contains(chat_id):
            # Selected chat vanished (deleted elsewhere); start a new one
            self.store.set_active(None)
            chat_id = None

        try:
            if chat_id is None:
                created = await self.repository.create(derive_title(prompt), [user_message])
                chat = self.store.upsert(created)
                self.store.set_active(chat.id)
                if self.on_select:
                    self.on_select(chat.id)
                logger.info(f"Started chat {chat.id} ({chat.title})")
            else:
                updated = await self.repository.append_messages(chat_id, [user_message])
                chat = self.store.reconcile(updated)
        except PersistenceError:
            logger.error("Failed to persist user message", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Failed to persist user message: {e}", exc_info=True)
            raise PersistenceError("Failed to save your message. Please try again.") from e

        return chat

    def _start_cycle(self, chat: Chat, token: CancellationToken) -> _Cycle:
        # A streaming message left over from an interrupted run is closed first
        self.store.update_streaming_message(chat.id, lambda m: {"is_streaming": False})
        placeholder_time = display_time()
        self.store.append_message(chat.id, {
            "role": "assistant",
            "text": "",
            "time": placeholder_time,
            "is_streaming": True,
        })
        current = self.store.get(chat.id)
        cycle = _Cycle(
            chat_id=chat.id,
            token=token,
            index=len(current.messages) - 1 if current else len(chat.messages),
            time=placeholder_time,
        )
        self._cycle = cycle
        self._set_state(StreamState.STREAMING_REPLY)
        return cycle

    def _reply_with_fallback(self, chat_id: str) -> Dict[str, Any]:
        reply_time = display_time()
        self.store.append_message(chat_id, {
            "role": "assistant",
            "text": self.fallback_message,
            "time": reply_time,
        })
        self._release()
        self._schedule(self._persist_reply(chat_id, self.fallback_message, reply_time, index=None))
        return {"type": "done", "chatId": chat_id, "text": self.fallback_message, "fallback": True}

    def _finish_completed(self, cycle: _Cycle, final_text: str) -> None:
        if cycle.terminal:
            return
        cycle.terminal = True
        cycle.text = final_text
        self._set_state(StreamState.FINALIZING)
        self.store.update_streaming_message(
            cycle.chat_id, lambda m: {"text": final_text, "is_streaming": False}
        )
        self._settle(cycle)
        if final_text:
            self._schedule(self._persist_reply(cycle.chat_id, final_text, cycle.time, cycle.index))

    def _finish_cancelled(self, cycle: _Cycle) -> None:
        if cycle.terminal:
            return
        cycle.terminal = True
        self._set_state(StreamState.CANCELLED)
        message = self.store.update_streaming_message(
            cycle.chat_id, lambda m: {"text": m.text + CANCELLED_SUFFIX, "is_streaming": False}
        )
        cycle.text = message.text if message else "".join(cycle.parts) + CANCELLED_SUFFIX
        self._settle(cycle)

    def _finish_failed(self, cycle: _Cycle, error_message: str) -> None:
        if cycle.terminal:
            return
        cycle.terminal = True
        cycle.text = f"Error: {error_message}"
        self._set_state(StreamState.FAILED)
        self.store.update_streaming_message(
            cycle.chat_id,
            lambda m: {"text": cycle.text, "is_streaming": False, "is_error": True},
        )
        self._settle(cycle)

    def _settle(self, cycle: _Cycle) -> None:
        """Release the loading guard if ``cycle`` still owns it."""
        if self._cycle is cycle:
            self._cycle = None
            self._release()

    def _release(self) -> None:
        self._token = None
        self.is_loading = False
        self._set_state(StreamState.IDLE)

    def _terminal_event(self, kind: str, cycle: _Cycle, error: Optional[str] = None) -> Dict[str, Any]:
        event = {"type": kind, "chatId": cycle.chat_id, "text": cycle.text}
        if error is not None:
            event["error"] = error
        return event

    # ---- background persistence ----

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist_reply(self, chat_id: str, text: str, time: str, index: Optional[int]) -> None:
        """
        Save an assistant reply that is already on screen.

        A failure never hides the reply: it is flagged as an error with a
        note appended. Fallback replies (``index`` None) are only logged.
        """
        log = LoggerAdapter(logger, {"chat_id": chat_id})
        try:
            confirmed = await self.repository.append_messages(
                chat_id, [{"role": "assistant", "text": text, "time": time}]
            )
        except Exception as e:
            log.error(f"Failed to save assistant reply: {e}")
            if index is None:
                return
            position = self._locate_reply(chat_id, index, text)
            if position is not None:
                self.store.update_message(chat_id, position, {
                    "is_error": True,
                    "text": f"{text}{SAVE_FAILED_NOTE}",
                })
            return

        if not self.store.contains(chat_id):
            log.info("Chat deleted before its reply was saved; not restoring it")
            return
        self.store.reconcile(confirmed)
        log.debug(f"Assistant reply saved: {truncate_large_data(text, 200)}")

    def _locate_reply(self, chat_id: str, index: int, text: str) -> Optional[int]:
        chat = self.store.get(chat_id)
        if chat is None:
            return None

        def matches(i: int) -> bool:
            m = chat.messages[i]
            return m.role == "assistant" and not m.is_streaming and m.text == text

        if 0 <= index < len(chat.messages) and matches(index):
            return index
        for i in range(len(chat.messages) - 1, -1, -1):
            if matches(i):
                return i
        return None

    def _set_state(self, state: StreamState) -> None:
        if state != self.state:
            logger.debug(f"Streaming state {self.state.value} -> {state.value}")
        self.state = state
