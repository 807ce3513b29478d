"""apisandbox session - active environment, send-and-record, persistence."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import BaseModel, ValidationError

from apisandbox.exchange import (
    build_export,
    merge_collections,
    merge_environments,
    merge_history,
)
from apisandbox.executor import Executor
from apisandbox.history import MAX_HISTORY, HistoryLog, make_history_item
from apisandbox.models import (
    ApiResponse,
    CollectionItem,
    Environment,
    ExportData,
    KeyValuePair,
    RequestDefinition,
    RequestHistoryItem,
)
from apisandbox.storage import STORAGE_KEYS, JsonStore

logger = logging.getLogger(__name__)


def _load_models(store: JsonStore, key: str, model: type[BaseModel]) -> list[Any]:
    """Validate each stored entry; entries that no longer validate are skipped."""
    raw = store.get_item(key, [])
    if not isinstance(raw, list):
        logger.warning("Ignoring %s: expected a list", key)
        return []
    items = []
    for index, entry in enumerate(raw):
        try:
            items.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning("Skipping invalid %s entry %d: %s", key, index, e)
    return items


class Session:
    """What a UI would hold: collections, environments, history, one executor.

    ``fire`` is the send path: build with the active environment, send,
    record the exchange in history.
    """

    def __init__(
        self,
        store: JsonStore,
        executor: Executor | None = None,
        history_limit: int = MAX_HISTORY,
    ) -> None:
        self.store = store
        self._executor = executor
        self.collections: list[CollectionItem] = _load_models(
            store, STORAGE_KEYS["collections"], CollectionItem
        )
        self.environments: list[Environment] = _load_models(
            store, STORAGE_KEYS["environments"], Environment
        )
        self.history = HistoryLog(
            _load_models(store, STORAGE_KEYS["history"], RequestHistoryItem),
            max_items=history_limit,
        )
        self.active_environment_id: str | None = store.get_item(
            STORAGE_KEYS["active_environment"]
        )

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            self._executor = Executor()
        return self._executor

    # ── Environments ─────────────────────────────────────────────────────

    @property
    def active_environment(self) -> Environment | None:
        for env in self.environments:
            if env.id == self.active_environment_id:
                return env
        return None

    def activate(self, name_or_id: str, persist: bool = True) -> Environment:
        """Select an environment by id or name; persist=False keeps it in memory only."""
        for env in self.environments:
            if name_or_id in (env.id, env.name):
                self.active_environment_id = env.id
                if persist:
                    self.store.set_item(STORAGE_KEYS["active_environment"], env.id)
                logger.info("Active environment: %s", env.name)
                return env
        raise KeyError(f"Environment '{name_or_id}' not found")

    def deactivate(self) -> None:
        self.active_environment_id = None
        self.store.remove_item(STORAGE_KEYS["active_environment"])

    def active_variables(self) -> list[KeyValuePair]:
        env = self.active_environment
        return list(env.variables) if env else []

    # ── Collections ──────────────────────────────────────────────────────

    def find_request(self, name_or_id: str) -> RequestDefinition | None:
        for root in self.collections:
            for node in root.walk():
                if node.request is None:
                    continue
                if name_or_id in (node.id, node.request.id, node.request.name, node.name):
                    return node.request
        return None

    # ── Sending ──────────────────────────────────────────────────────────

    async def fire(
        self,
        definition: RequestDefinition,
        extra_variables: Iterable[KeyValuePair] = (),
        timeout_ms: int | None = None,
    ) -> ApiResponse:
        """Build, send and record.

        ``extra_variables`` are applied before the active environment's, so
        they win for the same key. Build errors propagate and nothing is
        recorded. Client-side failures (status 0) are returned but not
        recorded.
        """
        variables = list(extra_variables) + self.active_variables()
        response = await self.executor.execute(definition, variables, timeout_ms)
        if not response.is_client_error:
            self.history.record(make_history_item(definition, response))
            self._persist_history()
        return response

    # ── Import / export ──────────────────────────────────────────────────

    def export(self, sections: Iterable[str] | None = None) -> ExportData:
        wanted = set(sections or ("collections", "environments", "history"))
        return build_export(
            collections=self.collections if "collections" in wanted else None,
            environments=self.environments if "environments" in wanted else None,
            history=self.history.items if "history" in wanted else None,
        )

    def apply_import(self, data: ExportData, mode: str = "merge") -> dict[str, int]:
        """Merge (or replace) imported sections. Returns counts after import."""
        counts: dict[str, int] = {}
        if data.collections is not None:
            self.collections = merge_collections(self.collections, data.collections, mode)
            self.store.set_item(
                STORAGE_KEYS["collections"], [c.to_dict() for c in self.collections]
            )
            counts["collections"] = len(self.collections)
        if data.environments is not None:
            self.environments = merge_environments(self.environments, data.environments, mode)
            self.store.set_item(
                STORAGE_KEYS["environments"], [e.to_dict() for e in self.environments]
            )
            counts["environments"] = len(self.environments)
        if data.history is not None:
            existing = [] if mode == "replace" else self.history.items
            merged = merge_history(existing, data.history, self.history.max_items)
            self.history = HistoryLog(merged, max_items=self.history.max_items)
            self.store.set_item(STORAGE_KEYS["history"], [h.to_dict() for h in self.history])
            counts["history"] = len(self.history)
        logger.info("Imported %s (%s)", counts, mode)
        return counts

    # ── Persistence ──────────────────────────────────────────────────────

    def _persist_history(self) -> None:
        self.store.debounced_set_item(
            STORAGE_KEYS["history"], [h.to_dict() for h in self.history]
        )

    def save(self) -> None:
        self.store.flush()

    async def aclose(self) -> None:
        self.save()
        if self._executor is not None:
            await self._executor.aclose()
