"""Tests for the bounded request history."""

from apisandbox.history import MAX_HISTORY, HistoryLog, make_history_item
from tests.conftest import make_request, make_response


def _item(n):
    return make_history_item(make_request(id=f"req_{n}", name=f"r{n}"), make_response())


class TestHistoryLog:
    def test_newest_first(self):
        log = HistoryLog()
        for n in range(3):
            log.record(_item(n))
        assert [item.request.id for item in log] == ["req_2", "req_1", "req_0"]

    def test_capped_at_fifty(self):
        log = HistoryLog()
        for n in range(51):
            log.record(_item(n))
        assert len(log) == MAX_HISTORY == 50
        assert log[0].request.id == "req_50"
        assert log[-1].request.id == "req_1"

    def test_custom_limit(self):
        log = HistoryLog(max_items=2)
        for n in range(5):
            log.record(_item(n))
        assert [item.request.id for item in log.items] == ["req_4", "req_3"]

    def test_loaded_items_truncated(self):
        log = HistoryLog([_item(n) for n in range(5)], max_items=3)
        assert len(log) == 3

    def test_items_is_a_copy(self):
        log = HistoryLog()
        log.record(_item(0))
        log.items.clear()
        assert len(log) == 1

    def test_clear(self):
        log = HistoryLog([_item(0)])
        log.clear()
        assert len(log) == 0


class TestSnapshot:
    def test_later_edits_do_not_leak_in(self):
        request = make_request(url="https://a.example.com")
        item = make_history_item(request, make_response())
        request.url = "https://b.example.com"
        assert item.request.url == "https://a.example.com"

    def test_item_gets_id_and_timestamp(self):
        item = _item(0)
        assert item.id.startswith("hist_")
        assert item.timestamp > 0
