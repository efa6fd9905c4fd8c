"""
Client for an OpenAI-compatible chat-completions API (Cerebras by default).

Every failure of the HTTP call is converted exactly once, at this boundary,
into a classified ``CompletionError``; callers never see httpx exceptions.

Example usage:
    client = CompletionClient(CompletionConfig(api_key="csk-..."))
    text = await client.complete("Rewrite politely:\\n\\nship it now")
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from sheets_rewrite.config.domains import API_KEY_ENV_VAR, CompletionConfig
from sheets_rewrite.core.classifier import classify_failure
from sheets_rewrite.core.errors import CompletionError, ConfigurationError, ErrorKind, RewriteError
from sheets_rewrite.core.observability.redaction import redact_text

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_ENDPOINT = "/chat/completions"


def _extract_error_message(response: httpx.Response) -> str:
    """Pull a short, redacted error message out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        return redact_text(response.text[:200]) if response.text else "Unknown error"

    error_field = data.get("error") if isinstance(data, dict) else None
    if isinstance(error_field, dict):
        message = error_field.get("message", str(error_field))
    elif isinstance(error_field, str):
        message = error_field
    elif isinstance(data, dict):
        message = data.get("message", response.text[:200])
    else:
        message = response.text[:200]
    return redact_text(str(message))


class CompletionClient:
    """Async client for the remote text-completion service.

    Raises:
        ConfigurationError: At construction when no API key is configured
    """

    def __init__(
        self,
        config: Optional[CompletionConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            config: Completion settings. If ``api_key`` is unset, reads it
                from the CEREBRAS_API_KEY environment variable.
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.config = config or CompletionConfig()
        self._api_key = self.config.api_key or os.environ.get(API_KEY_ENV_VAR)
        if not self._api_key:
            raise ConfigurationError(
                "Completion API key required. Provide via [completion].api_key "
                f"or {API_KEY_ENV_VAR} environment variable."
            )
        self._base_url = self.config.base_url.rstrip("/")
        self._transport = transport

    @property
    def model(self) -> str:
        return self.config.model

    def _build_payload(self, prompt: str, max_tokens: Optional[int]) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
            "stream": False,
        }

    async def complete(self, prompt: str, *, max_tokens: Optional[int] = None) -> str:
        """Send ``prompt`` and return the trimmed completion text.

        Raises:
            CompletionError: Classified failure (status, transport, or an
                empty/invalid response, which is API_UNAVAILABLE)
        """
        url = f"{self._base_url}{CHAT_COMPLETIONS_ENDPOINT}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.config.request_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url, json=self._build_payload(prompt, max_tokens), headers=headers
                )
                if response.status_code >= 400:
                    logger.debug(
                        "Completion API error %d: %s",
                        response.status_code,
                        _extract_error_message(response),
                    )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_failure(e) from e

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise CompletionError(
                "Invalid response from completion API", ErrorKind.API_UNAVAILABLE
            ) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices, list):
            raise CompletionError("No response from completion API", ErrorKind.API_UNAVAILABLE)

        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise CompletionError("Empty response from completion API", ErrorKind.API_UNAVAILABLE)
        return text

    async def test_connection(self) -> bool:
        """Send a minimal prompt to verify the key and connectivity.

        Returns:
            True if the API answered, False otherwise
        """
        try:
            await self.complete("Hello", max_tokens=10)
            return True
        except RewriteError as e:
            logger.warning("Completion API connection test failed: %s", e.message)
            return False
