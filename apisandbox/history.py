"""apisandbox history - bounded, newest-first log of completed requests."""

import logging
from typing import Iterable, Iterator

from apisandbox.models import ApiResponse, RequestDefinition, RequestHistoryItem

logger = logging.getLogger(__name__)

MAX_HISTORY = 50


def make_history_item(
    request: RequestDefinition,
    response: ApiResponse,
) -> RequestHistoryItem:
    """Snapshot a request/response pair. Later edits to ``request`` don't leak in."""
    return RequestHistoryItem(
        request=request.model_copy(deep=True),
        response=response.model_copy(deep=True),
    )


class HistoryLog:
    """Most recent first; anything past ``max_items`` is dropped on record."""

    def __init__(
        self,
        items: Iterable[RequestHistoryItem] | None = None,
        max_items: int = MAX_HISTORY,
    ) -> None:
        self.max_items = max_items
        self._items: list[RequestHistoryItem] = list(items or [])[:max_items]

    def record(self, item: RequestHistoryItem) -> RequestHistoryItem:
        self._items.insert(0, item)
        if len(self._items) > self.max_items:
            dropped = len(self._items) - self.max_items
            del self._items[self.max_items :]
            logger.debug("History full, dropped %d oldest item(s)", dropped)
        return item

    @property
    def items(self) -> list[RequestHistoryItem]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[RequestHistoryItem]:
        return iter(list(self._items))

    def __getitem__(self, index: int) -> RequestHistoryItem:
        return self._items[index]
