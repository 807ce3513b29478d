"""apisandbox exchange - export/import of collections, environments and history.

Document shape::

    {
      "version": "1.0.0",
      "exportDate": "2026-01-01T12:00:00.000Z",
      "collections": [...],     # any subset of these three
      "environments": [...],
      "history": [...]
    }
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import ValidationError

from apisandbox.models import (
    CollectionItem,
    Environment,
    ExportData,
    RequestHistoryItem,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
MAX_IMPORT_BYTES = 10 * 1024 * 1024
MERGED_HISTORY_LIMIT = 100

MergeMode = Literal["merge", "replace"]


class ImportDataError(Exception):
    """An import file could not be read, parsed or validated."""


# ── Export ───────────────────────────────────────────────────────────────


def _now_iso() -> str:
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def build_export(
    collections: list[CollectionItem] | None = None,
    environments: list[Environment] | None = None,
    history: list[RequestHistoryItem] | None = None,
) -> ExportData:
    """Sections left as None are omitted from the document."""
    return ExportData(
        version=EXPORT_VERSION,
        export_date=_now_iso(),
        collections=collections,
        environments=environments,
        history=history,
    )


def dump_export(data: ExportData) -> str:
    return json.dumps(data.to_dict(), indent=2, ensure_ascii=False)


def export_filename(kind: str, today: date | None = None) -> str:
    """e.g. ``api-sandbox-history-2026-10-18.json``; kind 'backup' for everything."""
    today = today or date.today()
    return f"api-sandbox-{kind}-{today:%Y-%m-%d}.json"


def write_export(data: ExportData, path: str | Path) -> Path:
    path = Path(path)
    path.write_text(dump_export(data), encoding="utf-8")
    logger.info("Exported data to %s", path)
    return path


# ── Import ───────────────────────────────────────────────────────────────


def _validate_items(
    items: Any,
    label: str,
    plural: str,
    required: tuple[str, ...],
    errors: list[str],
) -> None:
    if items is None:
        return
    if not isinstance(items, list):
        errors.append(f"{plural} must be an array")
        return
    for index, item in enumerate(items):
        item = item if isinstance(item, dict) else {}
        for field_name in required:
            if not item.get(field_name):
                errors.append(f"{label} {index} missing {field_name}")


def validate_import_data(data: Any) -> list[str]:
    """Structural checks on a parsed document. An empty list means valid."""
    if not isinstance(data, dict):
        return ["Invalid data format"]

    errors: list[str] = []
    if not data.get("version"):
        errors.append("Missing version field")
    if not data.get("exportDate"):
        errors.append("Missing exportDate field")

    _validate_items(
        data.get("collections"), "Collection", "Collections", ("id", "name", "type"), errors
    )

    environments = data.get("environments")
    _validate_items(environments, "Environment", "Environments", ("id", "name"), errors)
    if isinstance(environments, list):
        for index, env in enumerate(environments):
            if not isinstance(env, dict) or not isinstance(env.get("variables"), list):
                errors.append(f"Environment {index} missing or invalid variables array")

    _validate_items(
        data.get("history"),
        "History item",
        "History",
        ("id", "request", "response", "timestamp"),
        errors,
    )

    if all(data.get(k) is None for k in ("collections", "environments", "history")):
        errors.append("No data to import (collections, environments, or history)")

    return errors


def parse_import(text: str) -> ExportData:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportDataError("Invalid JSON format in file") from e

    errors = validate_import_data(data)
    if errors:
        raise ImportDataError(f"Validation failed: {', '.join(errors)}")

    try:
        return ExportData.model_validate(data)
    except ValidationError as e:
        raise ImportDataError(f"Validation failed: {e}") from e


def load_import(path: str | Path) -> ExportData:
    """Read and validate an export file (``.json``, at most 10 MB)."""
    path = Path(path)
    if path.suffix.lower() != ".json":
        raise ImportDataError("File must be a JSON file")
    try:
        size = path.stat().st_size
        if size > MAX_IMPORT_BYTES:
            raise ImportDataError("File size exceeds 10MB limit")
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ImportDataError(f"Failed to read file: {e}") from e
    return parse_import(text)


# ── Merging ──────────────────────────────────────────────────────────────


def _merge_by_id(existing: list, imported: list, mode: MergeMode) -> list:
    if mode == "replace":
        return list(imported)
    known = {item.id for item in existing}
    return list(existing) + [item for item in imported if item.id not in known]


def merge_collections(
    existing: list[CollectionItem],
    imported: list[CollectionItem],
    mode: MergeMode = "merge",
) -> list[CollectionItem]:
    """'merge' appends imported items whose id is new; 'replace' takes imported."""
    return _merge_by_id(existing, imported, mode)


def merge_environments(
    existing: list[Environment],
    imported: list[Environment],
    mode: MergeMode = "merge",
) -> list[Environment]:
    return _merge_by_id(existing, imported, mode)


def merge_history(
    existing: list[RequestHistoryItem],
    imported: list[RequestHistoryItem],
    max_items: int = MERGED_HISTORY_LIMIT,
) -> list[RequestHistoryItem]:
    """Newest first, first occurrence of each id kept, capped at ``max_items``."""
    combined = sorted(existing + imported, key=lambda item: item.timestamp, reverse=True)
    seen: set[str] = set()
    unique = []
    for item in combined:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique[:max_items]
