"""Text-generation clients for lexicon cleanup."""

from .client import (
    FakeFormattingClient,
    OpenAIFormattingClient,
    TextGenerationClient,
    get_generation_client,
)
from .prompts import FORMAT_PROMPT_VERSION

__all__ = [
    "TextGenerationClient",
    "FakeFormattingClient",
    "OpenAIFormattingClient",
    "get_generation_client",
    "FORMAT_PROMPT_VERSION",
]
