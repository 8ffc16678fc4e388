"""
Normalization of chat and message records.

Records arrive from the remote chat store, the legacy cache and the API in
whatever shape their producer chose. Everything entering the ChatStore goes
through ``normalize_chat`` / ``normalize_message`` first, so the rest of the
package can rely on the strict ``Chat`` / ``Message`` shape.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from ..models.chat import Chat, Message

DEFAULT_CHAT_TITLE = "New Chat"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def display_time() -> str:
    """Short wall-clock label shown next to a freshly created message."""
    return datetime.now().strftime("%H:%M")


def _as_mapping(record: Any) -> Mapping:
    if isinstance(record, BaseModel):
        return record.model_dump()
    if isinstance(record, Mapping):
        return record
    return {}


def _pick(data: Mapping, *keys: str) -> Any:
    """Return the first truthy value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert ``value`` to an aware datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings
    (a trailing ``Z`` is allowed) and epoch milliseconds. Anything else,
    including unparseable strings, yields None.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def normalize_message(record: Any) -> Message:
    """
    Canonicalize an arbitrary message record.

    Role defaults to ``user`` unless explicitly ``assistant``; non-string text
    becomes ``""``; a blank time is replaced by the current ISO timestamp;
    ``is_streaming`` is forced off for error messages.
    """
    data = _as_mapping(record)

    text = data.get("text")
    time = data.get("time")
    is_error = bool(_pick(data, "is_error", "isError"))
    is_streaming = bool(_pick(data, "is_streaming", "isStreaming")) and not is_error

    return Message(
        role="assistant" if data.get("role") == "assistant" else "user",
        text=text if isinstance(text, str) else "",
        time=time if isinstance(time, str) and time.strip() else utcnow().isoformat(),
        is_streaming=is_streaming,
        is_error=is_error,
    )


def normalize_chat(record: Any = None) -> Chat:
    """
    Canonicalize an arbitrary chat record.

    ``None`` synthesizes a fresh, transient chat. The id is read from ``_id``
    or ``id``; ``updated_at`` falls back to ``created_at`` and both default to
    now; ``archived_at`` is kept only while the chat is archived.
    """
    if not record:
        now = utcnow()
        return Chat(
            id=None,
            title=DEFAULT_CHAT_TITLE,
            created_at=now,
            updated_at=now,
            archived=False,
            archived_at=None,
            messages=[],
        )

    data = _as_mapping(record)

    chat_id = _pick(data, "_id", "id")
    title = data.get("title")
    created_at = coerce_timestamp(_pick(data, "created_at", "createdAt")) or utcnow()
    updated_at = coerce_timestamp(_pick(data, "updated_at", "updatedAt")) or created_at
    archived = bool(data.get("archived"))
    archived_at = coerce_timestamp(_pick(data, "archived_at", "archivedAt")) if archived else None
    messages = data.get("messages")

    return Chat(
        id=str(chat_id) if chat_id else None,
        title=title if isinstance(title, str) and title else DEFAULT_CHAT_TITLE,
        created_at=created_at,
        updated_at=updated_at,
        archived=archived,
        archived_at=archived_at,
        messages=[normalize_message(m) for m in messages] if isinstance(messages, (list, tuple)) else [],
    )


def recency_key(chat: Chat) -> datetime:
    return coerce_timestamp(chat.updated_at or chat.created_at) or _EPOCH


def sort_chats_by_recency(chats: Iterable[Chat]) -> List[Chat]:
    """Most recently active first; ties keep their input order."""
    # sorted() is stable, and reverse=True keeps equal keys in input order
    return sorted(chats, key=recency_key, reverse=True)


def normalize_message_payload(messages: Any) -> List[Dict[str, str]]:
    """
    Prepare messages for a create/append call to the remote chat store.

    Entries without a non-blank string text are dropped; text is trimmed and
    each entry is reduced to ``{role, text, time}``.
    """
    if not isinstance(messages, (list, tuple)):
        return []

    payload = []
    for record in messages:
        data = _as_mapping(record)
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        time = data.get("time")
        payload.append({
            "role": "assistant" if data.get("role") == "assistant" else "user",
            "text": text.strip(),
            "time": time.strip() if isinstance(time, str) and time.strip() else utcnow().isoformat(),
        })
    return payload
