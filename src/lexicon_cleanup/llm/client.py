"""Text-generation clients that propose formatting edits for lexicon records.

A client is a stateless transform over one request/response pair: it reads a
record, asks the service for a replacement, and returns the parsed result.
Retries and pacing belong to the engine, not here.
"""

import html
import json
import math
import os
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import requests

from ..config import GenerationConfig
from ..errors import GenerationError
from ..models.proposal import GenerationResult
from ..models.record import LexiconRecord
from .prompts import FORMAT_PROMPT_VERSION, SYSTEM_PROMPT, build_user_prompt

_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_TAG_RE = re.compile(r"<\s*(br|/p|/div|/li)\s*/?\s*>", re.IGNORECASE)
_SPACES_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TextGenerationClient(ABC):
    """Abstract interface for formatting clients."""

    @abstractmethod
    def generate_formatting(self, record: LexiconRecord, field: str = "text") -> GenerationResult:
        """Propose a replacement for one field of a record.

        Args:
            record: The record to format. Never mutated.
            field: Record field to format ("text" or "title")

        Returns:
            GenerationResult with the proposed text and generation metadata

        Raises:
            GenerationError: If the call fails or the response is unusable
        """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Return engine identifier (e.g., 'fake', 'openai')."""

    @property
    def provider_model(self) -> str | None:
        """Return provider/model string for real clients, None for fake."""
        return None


class FakeFormattingClient(TextGenerationClient):
    """Deterministic local formatter.

    Strips markup, decodes entities and collapses whitespace without any
    network call. Same input always produces same output.
    """

    @property
    def engine_name(self) -> str:
        return "fake"

    def generate_formatting(self, record: LexiconRecord, field: str = "text") -> GenerationResult:
        started = time.monotonic()
        value = record.field_value(field)

        cleaned = _BREAK_TAG_RE.sub("\n", value)
        cleaned = _TAG_RE.sub("", cleaned)
        cleaned = html.unescape(cleaned).replace("\xa0", " ")
        cleaned = _SPACES_RE.sub(" ", cleaned)
        cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
        cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned).strip()

        tags_removed = len(_TAG_RE.findall(value))
        return GenerationResult(
            formatted_text=cleaned,
            reason=f"FakeFormatter: removed {tags_removed} tag(s), normalized whitespace",
            confidence=0.9 if cleaned != value else 1.0,
            metadata={
                "provider": "fake",
                "model": "fake-formatter",
                "prompt_version": FORMAT_PROMPT_VERSION,
                "generated_at": _now_iso(),
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )


class OpenAIFormattingClient(TextGenerationClient):
    """Formatting client for the OpenAI chat completions API.

    Requires OPENAI_API_KEY environment variable unless api_key is passed.
    """

    def __init__(self, config: GenerationConfig | None = None, api_key: str | None = None):
        """Initialize the client.

        Args:
            config: Model, endpoint and timeout settings
            api_key: API key. If None, reads from OPENAI_API_KEY env var.

        Raises:
            ValueError: If no API key is provided or found in environment
        """
        self.config = config or GenerationConfig()
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("Missing API key: set OPENAI_API_KEY environment variable")

    @property
    def engine_name(self) -> str:
        return "openai"

    @property
    def provider_model(self) -> str:
        return f"openai/{self.config.model}"

    def generate_formatting(self, record: LexiconRecord, field: str = "text") -> GenerationResult:
        value = record.field_value(field)
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(record.title, field, value)},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }

        started = time.monotonic()
        response_json = self._post(payload)
        latency_ms = int((time.monotonic() - started) * 1000)

        return self._parse_response(response_json, latency_ms)

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        try:
            response = requests.post(
                self.config.api_url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
        except requests.Timeout as e:
            raise GenerationError(f"Request timed out after {self.config.timeout_seconds}s") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            body = e.response.text[:300] if e.response is not None else ""
            raise GenerationError(f"API error {status}: {body}") from e
        except requests.RequestException as e:
            raise GenerationError(f"Network error: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise GenerationError("API returned a non-JSON body") from e

    def _parse_response(self, response: dict[str, Any], latency_ms: int) -> GenerationResult:
        try:
            content = response["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError("Response has no message content") from e

        if not isinstance(content, str):
            raise GenerationError(f"Message content is not text: {type(content).__name__}")
        if not content.strip():
            raise GenerationError("Empty response from model")

        # Tolerate JSON wrapped in markdown code fences
        content = content.strip()
        if content.startswith("```"):
            lines = content.split("\n")
            content = "\n".join(lines[1:-1]) if lines[-1].strip() == "```" else "\n".join(lines[1:])

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise GenerationError(f"Unparsable model output: {e}") from e

        if not isinstance(data, dict):
            raise GenerationError("Model output is not a JSON object")

        # Older prompts answered with "value" instead of "formatted_text"
        formatted = data.get("formatted_text", data.get("value"))
        if not isinstance(formatted, str) or not formatted.strip():
            raise GenerationError("Model output is missing formatted_text")

        try:
            confidence = float(data.get("confidence", 0.9))
        except (TypeError, ValueError, OverflowError):
            confidence = 0.9
        if not math.isfinite(confidence):
            confidence = 0.9

        usage = response.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return GenerationResult(
            formatted_text=formatted,
            reason=str(data.get("reason", ""))[:500],
            confidence=min(max(confidence, 0.0), 1.0),
            metadata={
                "provider": "openai",
                "model": response.get("model", self.config.model),
                "prompt_version": FORMAT_PROMPT_VERSION,
                "generated_at": _now_iso(),
                "latency_ms": latency_ms,
                "prompt_tokens": usage.get("prompt_tokens"),
                "completion_tokens": usage.get("completion_tokens"),
            },
        )


def get_generation_client(engine: str = "auto", config: GenerationConfig | None = None) -> TextGenerationClient:
    """Get a generation client based on engine setting and available API keys.

    Args:
        engine: 'fake', 'openai', or 'auto'
                'auto' uses the OpenAI client if OPENAI_API_KEY is set, else fake
        config: Generation settings for the real client

    Returns:
        TextGenerationClient implementation

    Raises:
        ValueError: For 'openai' without an API key, or an unknown engine
    """
    if engine == "fake":
        return FakeFormattingClient()

    if engine == "openai":
        return OpenAIFormattingClient(config=config)

    if engine == "auto":
        if os.environ.get("OPENAI_API_KEY"):
            return OpenAIFormattingClient(config=config)
        return FakeFormattingClient()

    raise ValueError(f"Unsupported engine: {engine}")
