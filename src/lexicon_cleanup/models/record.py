"""Pydantic models for canonical lexicon records."""

from datetime import datetime

from pydantic import BaseModel, Field

# Record fields a proposal may target.
CURATABLE_FIELDS = ("text", "title")


class LexiconRecord(BaseModel):
    """The authoritative stored lexicon entry.

    Frozen: generation reads a record but can never mutate it. Only the
    store's approval step writes new field values back.
    """

    record_id: str = Field(min_length=1, description="Unique record identifier")
    title: str = Field(default="", description="Lexicon term")
    text: str = Field(default="", description="Free-text body of the entry")
    url_slug: str | None = Field(default=None, description="URL-friendly slug, if known")
    updated_at: datetime | None = Field(
        default=None,
        description="Last-modified timestamp (UTC)",
    )

    model_config = {"frozen": True}

    def field_value(self, field: str) -> str:
        """Return the current value of a curatable field."""
        if field not in CURATABLE_FIELDS:
            raise ValueError(f"Unsupported field: {field}")
        return getattr(self, field)
