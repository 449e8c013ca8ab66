"""
Text-completion collaborator client.

Components that need completions receive a CompletionClient explicitly; the
HTTP implementation speaks the OpenAI-compatible chat completions API and
always asks for a JSON object back.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """
    Raised when the completion service is unavailable or answers badly.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "error": "completion_error",
            "code": self.code,
            "message": self.message,
        }


class CompletionClient(ABC):
    """Anything that can turn a prompt into a parsed JSON object."""

    @abstractmethod
    def complete_json(self, system: str, prompt: str) -> Dict[str, Any]:
        """Send a prompt and return the decoded JSON object.

        Raises:
            CompletionError: If the call fails or the reply is not a JSON object
        """
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "CompletionClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class HttpCompletionClient(CompletionClient):
    """CompletionClient backed by an OpenAI-compatible HTTP endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 60.0,
        temperature: float = 0.3,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "HttpCompletionClient":
        return cls(
            base_url=settings.completion_base_url,
            api_key=settings.completion_api_key,
            model=settings.completion_model,
            timeout=settings.completion_timeout_seconds,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def complete_json(self, system: str, prompt: str) -> Dict[str, Any]:
        if not self.api_key:
            raise CompletionError("NOT_CONFIGURED", "No completion API key configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
        }

        try:
            response = self.client.post(f"{self.base_url}/chat/completions", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Completion request returned {e.response.status_code}")
            raise CompletionError(
                "HTTP_ERROR", f"Completion service returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Completion request failed: {e.__class__.__name__}")
            raise CompletionError("REQUEST_FAILED", str(e)) from e
        except ValueError as e:
            raise CompletionError("MALFORMED_RESPONSE", "Response body is not JSON") from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise CompletionError("MALFORMED_RESPONSE", "Response has no message content") from e
        if not content:
            raise CompletionError("EMPTY_RESPONSE", "Completion service returned no content")

        return parse_json_object(content)


def parse_json_object(content: str) -> Dict[str, Any]:
    """Decode a completion that must be a single JSON object."""
    try:
        parsed = json.loads(content)
    except ValueError as e:
        raise CompletionError("MALFORMED_RESPONSE", "Completion is not valid JSON") from e
    if not isinstance(parsed, dict):
        raise CompletionError("MALFORMED_RESPONSE", "Completion is not a JSON object")
    return parsed
