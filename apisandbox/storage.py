"""apisandbox storage - JSON-file key-value store with debounced writes.

One file per key under ``directory``. Writes are best-effort: failures are
logged and reported through the return value, never raised.

Debounce timers belong to the store instance (one asyncio.TimerHandle per
key), so two stores never share pending writes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "collections": "api-sandbox-collections",
    "environments": "api-sandbox-environments",
    "history": "api-sandbox-history",
    "active_environment": "api-sandbox-active-env",
}

DEFAULT_DEBOUNCE_MS = 500

_MISSING = object()


class JsonStore:
    def __init__(self, directory: str | Path, debounce_ms: int = DEFAULT_DEBOUNCE_MS) -> None:
        self.directory = Path(directory)
        self.debounce_ms = debounce_ms
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._pending: dict[str, Any] = {}

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    # ── Reads / writes ───────────────────────────────────────────────────

    def get_item(self, key: str, default: Any = None) -> Any:
        path = self.path_for(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read %s from %s: %s", key, path, e)
            return default

    def set_item(self, key: str, value: Any) -> bool:
        """Write now. Returns False (and logs) if the value can't be stored."""
        path = self.path_for(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            serialized = json.dumps(value, indent=2, ensure_ascii=False)
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(serialized, encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write %s to %s: %s", key, path, e)
            return False
        return True

    def debounced_set_item(self, key: str, value: Any, delay_ms: int | None = None) -> None:
        """Schedule a write; a newer call for the same key replaces it.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._cancel_timer(key)
        self._pending[key] = value
        delay = (self.debounce_ms if delay_ms is None else delay_ms) / 1000
        self._timers[key] = loop.call_later(delay, self._write_pending, key)

    def remove_item(self, key: str) -> None:
        self._cancel_timer(key)
        self._pending.pop(key, None)
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to remove %s: %s", key, e)

    def flush(self) -> int:
        """Write every pending value now. Returns how many were written."""
        written = 0
        for key in list(self._pending):
            self._cancel_timer(key)
            if self._write_pending(key):
                written += 1
        return written

    def clear_all(self, exclude: Iterable[str] = ()) -> None:
        """Drop pending writes and delete every application key not excluded."""
        excluded = set(exclude)
        for key in list(self._timers):
            self._cancel_timer(key)
        self._pending.clear()
        for key in STORAGE_KEYS.values():
            if key not in excluded:
                self.remove_item(key)

    def migrate_key(
        self,
        old_key: str,
        new_key: str,
        transform: Callable[[Any], Any] | None = None,
    ) -> bool:
        data = self.get_item(old_key)
        if data is None:
            return False
        if not self.set_item(new_key, transform(data) if transform else data):
            return False
        self.remove_item(old_key)
        return True

    # ── Internals ────────────────────────────────────────────────────────

    def _cancel_timer(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _write_pending(self, key: str) -> bool:
        self._timers.pop(key, None)
        value = self._pending.pop(key, _MISSING)
        if value is _MISSING:
            return False
        return self.set_item(key, value)
