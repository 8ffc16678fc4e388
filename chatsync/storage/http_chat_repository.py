"""
HTTP Chat Repository - Client for a REST chat backend.

Endpoints:
    GET    /api/chats                 -> [chat]
    POST   /api/chats                 {title, messages} -> chat
    POST   /api/chats/{id}/messages   {messages} -> chat
    PATCH  /api/chats/{id}            {title?, archived?} -> chat
    DELETE /api/chats/{id}            -> acknowledgement
"""

import httpx
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from ..core.exceptions import PersistenceError
from ..core.logging_config import filter_sensitive_data
from ..core.normalize import normalize_chat, normalize_message_payload
from ..models.chat import Chat
from .chat_repository import ChatRepository

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response, default: str) -> str:
    """Prefer the server's ``message`` field, as the backend reports errors that way."""
    try:
        payload = response.json()
    except ValueError:
        return default
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            if payload.get(key):
                return str(payload[key])
    return default


def _confirmed_chat(data: Any, failure: str) -> Chat:
    chat = normalize_chat(data if isinstance(data, dict) else None)
    if chat.is_transient:
        raise PersistenceError(f"{failure} The server returned no chat id.")
    return chat


class HttpChatRepository(ChatRepository):
    """ChatRepository backed by the remote chat API."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        start_time = time.time()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Chat API request: {method} {path}",
                extra={"extra_fields": {
                    "headers": filter_sensitive_data(self._get_headers()),
                    "body": json_body,
                }}
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, json=json_body, headers=self._get_headers())
                resp.raise_for_status()
                data = resp.json() if resp.content else None
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response, failure)
            logger.error(
                f"Chat API call failed: {method} {path} -> {e.response.status_code}",
                extra={"extra_fields": {
                    "status_code": e.response.status_code,
                    "error": message,
                }}
            )
            raise PersistenceError(message, status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Chat API unreachable: {method} {path}: {e}")
            raise PersistenceError(failure) from e
        except ValueError as e:
            logger.error(f"Chat API returned invalid JSON: {method} {path}")
            raise PersistenceError(failure) from e

        logger.debug(
            f"Chat API call completed: {method} {path}",
            extra={"extra_fields": {"duration_ms": round((time.time() - start_time) * 1000, 2)}}
        )
        return data

    async def list(self) -> List[Chat]:
        data = await self._request("GET", "/api/chats", "Failed to load chats.")
        if not isinstance(data, list):
            return []
        return [normalize_chat(item) for item in data]

    async def create(self, title: str, messages: Sequence[Any] = ()) -> Chat:
        data = await self._request(
            "POST", "/api/chats", "Failed to create chat.",
            json_body={"title": title, "messages": normalize_message_payload(list(messages))},
        )
        return _confirmed_chat(data, "Failed to create chat.")

    async def append_messages(self, chat_id: str, messages: Sequence[Any]) -> Chat:
        data = await self._request(
            "POST", f"/api/chats/{chat_id}/messages", "Failed to save your message.",
            json_body={"messages": normalize_message_payload(list(messages))},
        )
        return _confirmed_chat(data, "Failed to save your message.")

    async def update(
        self,
        chat_id: str,
        title: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> Chat:
        updates: Dict[str, Any] = {}
        if title is not None:
            updates["title"] = title
        if archived is not None:
            updates["archived"] = archived
        data = await self._request(
            "PATCH", f"/api/chats/{chat_id}", "Failed to update chat.", json_body=updates,
        )
        return _confirmed_chat(data, "Failed to update chat.")

    async def delete(self, chat_id: str) -> bool:
        await self._request("DELETE", f"/api/chats/{chat_id}", "Failed to delete chat.")
        return True
