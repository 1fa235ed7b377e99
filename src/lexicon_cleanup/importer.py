"""Load canonical lexicon records from JSON or CSV exports into the store."""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError

from .models.record import LexiconRecord
from .store import ProposalStore

logger = logging.getLogger(__name__)

# Export column names seen in the wild, mapped to record fields
_ID_KEYS = ("record_id", "id", "_id")
_TEXT_KEYS = ("text", "description")
_SLUG_KEYS = ("url_slug", "urlSlug", "slug")


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def record_from_mapping(data: dict[str, Any]) -> LexiconRecord:
    """Build a record from one exported row or object.

    Raises:
        ValueError: If the row has no usable id
    """
    record_id = _first(data, _ID_KEYS)
    if record_id is None:
        raise ValueError("Row has no id")
    slug = _first(data, _SLUG_KEYS)
    return LexiconRecord(
        record_id=str(record_id),
        title=str(data.get("title") or ""),
        text=str(_first(data, _TEXT_KEYS) or ""),
        url_slug=str(slug) if slug is not None else None,
    )


def _iter_rows(path: Path) -> Iterator[dict[str, Any]]:
    if path.suffix.lower() == ".csv":
        with open(path, "r", encoding="utf-8", newline="") as f:
            yield from csv.DictReader(f)
        return

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        # {"records": [...]} wrapper
        data = data.get("records", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of records")
    for item in data:
        if isinstance(item, dict):
            yield item


def import_records(store: ProposalStore, path: Path) -> tuple[int, int]:
    """Upsert every valid row of an export file.

    Returns:
        (imported, skipped) counts
    """
    imported = 0
    skipped = 0
    for index, row in enumerate(_iter_rows(path)):
        try:
            record = record_from_mapping(row)
        except (ValueError, ValidationError) as e:
            skipped += 1
            logger.warning(f"Skipping row {index} of {path.name}: {e}")
            continue
        store.upsert_record(record)
        imported += 1

    logger.info(f"Imported {imported} record(s) from {path} ({skipped} skipped)")
    return imported, skipped
