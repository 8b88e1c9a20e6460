"""Minimal chat-completions client for the AI feature steps."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import RuntimeSettings
from .errors import AIRequestError

LOGGER = logging.getLogger(__name__)


class ChatClient:
    """Call an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_content_length: int = 4000,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_content_length = max_content_length
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "ChatClient":
        return cls(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            timeout=settings.ai_request_timeout,
            max_content_length=settings.ai_max_content_length,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def truncate(self, content: str) -> str:
        if len(content) <= self.max_content_length:
            return content
        return content[: self.max_content_length] + "..."

    async def complete(self, messages: List[Dict[str, str]], **options: Any) -> str:
        """Return the first choice's message content.

        Raises:
            AIRequestError: On missing key, HTTP or network failure, timeout,
                or a response without message content.
        """
        if not self.api_key:
            raise AIRequestError("OPENAI_API_KEY is not set")

        payload: Dict[str, Any] = {"model": self.model, "messages": messages, **options}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}/chat/completions"

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise AIRequestError(
                f"Chat completion failed: {exc.response.status_code} - {exc.response.text}"
            ) from exc
        except httpx.RequestError as exc:
            raise AIRequestError(f"Chat completion request failed: {exc}") from exc
        except ValueError as exc:
            raise AIRequestError("Chat completion returned invalid JSON") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIRequestError("Chat completion returned no message") from exc
        if not content:
            raise AIRequestError("Chat completion returned an empty message")
        return content
