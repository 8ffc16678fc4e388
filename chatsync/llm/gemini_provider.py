"""
Gemini Proxy Provider.
The chat backend holds the Gemini credentials and exposes a single-shot
endpoint, ``POST /api/ai/gemini {prompt, history} -> {text}``. Streaming is
emulated by yielding the whole reply as one chunk.
"""

import httpx
import logging
import time
from typing import Optional, List, Dict, Any, AsyncGenerator

from ..core.exceptions import CompletionError
from .base import LLMProvider, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)


class GeminiProxyProvider(LLMProvider):
    """Provider that relays prompts through the chat backend's Gemini endpoint."""

    name = "gemini_proxy"

    def __init__(
        self,
        api_key: str = "",
        model: str = "gemini-2.0-flash",
        base_url: str = "http://localhost:5000",
        default_temperature: float = 0.7,
        default_max_tokens: int = 2048,
        timeout: float = 120.0,
    ):
        super().__init__(api_key, model, base_url.rstrip("/"), default_temperature, default_max_tokens)
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_payload(self, messages: List[LLMMessage]) -> Dict[str, Any]:
        conversation = [m for m in messages if m.role != "system"]
        prompt = conversation[-1].content if conversation else ""
        return {
            "prompt": prompt,
            "history": [{"role": m.role, "text": m.content} for m in conversation],
        }

    async def chat_completion(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        start_time = time.time()
        url = f"{self.base_url}/api/ai/gemini"
        payload = self._build_payload(messages)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers=self._get_headers())
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            try:
                body = e.response.json()
            except ValueError:
                body = {}
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(
                f"Gemini proxy call failed: {e.response.status_code}",
                extra={"extra_fields": {"provider": self.name, "error": message or str(e)}}
            )
            raise CompletionError(message or "Failed to contact AI service") from e
        except httpx.HTTPError as e:
            logger.error(f"Gemini proxy unreachable: {e}")
            raise CompletionError(str(e) or "Failed to contact AI service") from e

        text = data.get("text") if isinstance(data, dict) else None
        logger.info(
            "Gemini proxy call completed",
            extra={"extra_fields": {
                "provider": self.name,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            }}
        )
        return LLMResponse(
            content=text.strip() if isinstance(text, str) else "",
            model=self.model,
            raw=data if isinstance(data, dict) else None,
        )

    async def chat_completion_stream(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> AsyncGenerator[str, None]:
        response = await self.chat_completion(messages, temperature, max_tokens, **kwargs)
        if response.content:
            yield response.content
