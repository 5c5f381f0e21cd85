"""
Tests for cursor and timestamp pagination.
"""

import pytest

from src.polygon_retrieval.exceptions import PaginationError, TransientError
from src.polygon_retrieval.pagination import Page, Paginator, cursor_page, extract_cursor
from src.polygon_retrieval.params import QueryParams


class RecordingFetch:
    """Returns scripted envelopes and records the query of every call."""

    def __init__(self, *envelopes):
        self.envelopes = list(envelopes)
        self.queries = []

    def __call__(self, query):
        self.queries.append(query.to_dict())
        return self.envelopes.pop(0)


def tick(ts, seq):
    return {"t": ts, "q": seq}


# ============================================================================
# Cursor pagination
# ============================================================================


class TestCursorHelpers:
    """next_url parsing."""

    def test_extract_cursor(self):
        url = "https://api.polygon.io/v3/trades/AAPL?cursor=YWJjZA%3D%3D&limit=10"
        assert extract_cursor(url) == "YWJjZA=="

    def test_missing_cursor(self):
        with pytest.raises(PaginationError):
            extract_cursor("https://api.polygon.io/v3/trades/AAPL?limit=10")

    def test_non_string_next_url(self):
        with pytest.raises(PaginationError):
            extract_cursor(42)

    def test_last_page(self):
        assert cursor_page({"results": [1, 2]}) == Page(items=[1, 2], continuation=None)

    def test_missing_results_is_empty_page(self):
        assert cursor_page({"status": "OK"}).items == []

    def test_non_object_envelope(self):
        with pytest.raises(PaginationError):
            cursor_page([1, 2, 3])


class TestCollectCursor:
    """Walking next_url cursors."""

    def test_collects_all_pages_in_order(self):
        fetch = RecordingFetch(
            {"results": [1, 2], "next_url": "https://x/v3/trades/A?cursor=c1"},
            {"results": [3], "next_url": "https://x/v3/trades/A?cursor=c2"},
            {"results": [4, 5]},
        )
        paginator = Paginator()
        result = paginator.collect_cursor(fetch, {"limit": 2, "order": "asc"})

        assert result == [1, 2, 3, 4, 5]
        assert paginator.pages_fetched == 3
        assert fetch.queries == [
            {"limit": "2", "order": "asc"},
            {"cursor": "c1"},
            {"cursor": "c2"},
        ]

    def test_malformed_next_url(self):
        fetch = RecordingFetch({"results": [1], "next_url": "https://x/v3/trades/A"})
        with pytest.raises(PaginationError):
            Paginator().collect_cursor(fetch)

    def test_fetch_errors_propagate(self):
        def fetch(query):
            raise TransientError("retries exhausted")

        with pytest.raises(TransientError):
            Paginator().collect_cursor(fetch)

    def test_caller_params_not_mutated(self):
        params = QueryParams().limit(1)
        fetch = RecordingFetch({"results": [1]})
        Paginator().collect_cursor(fetch, params)
        assert params.to_dict() == {"limit": "1"}

    def test_max_pages(self):
        fetch = RecordingFetch(
            {"results": [1], "next_url": "https://x/?cursor=a"},
            {"results": [2], "next_url": "https://x/?cursor=b"},
        )
        with pytest.raises(PaginationError):
            Paginator(max_pages=1).collect_cursor(fetch)
        assert len(fetch.queries) == 1

    def test_cancellation(self):
        fetch = RecordingFetch(
            {"results": [1], "next_url": "https://x/?cursor=a"},
            {"results": [2]},
        )
        with pytest.raises(PaginationError):
            Paginator(should_continue=lambda: False).collect_cursor(fetch)
        assert len(fetch.queries) == 1

    def test_invalid_max_pages(self):
        with pytest.raises(ValueError):
            Paginator(max_pages=0)


# ============================================================================
# Timestamp pagination with dedup
# ============================================================================


class TestCollectByTimestamp:
    """Boundary deduplication on non-unique timestamps."""

    T = 1_000

    def test_boundary_records_not_duplicated(self):
        T = self.T
        page1 = [tick(T - 3, 97), tick(T - 2, 98), tick(T - 1, 99), tick(T, 1), tick(T, 2), tick(T, 3)]
        page2 = [tick(T, 1), tick(T, 2), tick(T, 3), tick(T, 4), tick(T + 1, 5)]
        fetch = RecordingFetch({"results": page1}, {"results": page2})

        result = Paginator().collect_by_timestamp(fetch, limit=6)

        assert [r["q"] for r in result] == [97, 98, 99, 1, 2, 3, 4, 5]
        assert fetch.queries == [
            {"limit": "6"},
            {"limit": "6", "timestamp": str(T)},
        ]

    def test_short_first_page_ends_walk(self):
        fetch = RecordingFetch({"results": [tick(1, 1), tick(2, 2)]})
        result = Paginator().collect_by_timestamp(fetch, limit=5)
        assert len(result) == 2
        assert len(fetch.queries) == 1

    def test_empty_page(self):
        fetch = RecordingFetch({"results": []})
        assert Paginator().collect_by_timestamp(fetch, limit=5) == []

    def test_initial_timestamp_kept(self):
        fetch = RecordingFetch({"results": []})
        Paginator().collect_by_timestamp(fetch, {"timestamp": 500}, limit=5)
        assert fetch.queries == [{"timestamp": "500", "limit": "5"}]

    def test_repeated_boundary_accumulates_ids(self):
        fetch = RecordingFetch(
            {"results": [tick(4, 0), tick(5, 1), tick(5, 2)]},
            {"results": [tick(5, 1), tick(5, 2), tick(5, 3)]},
            {"results": [tick(5, 2), tick(5, 3), tick(6, 4)]},
            {"results": [tick(6, 4)]},
        )
        result = Paginator().collect_by_timestamp(fetch, limit=3)

        assert [r["q"] for r in result] == [0, 1, 2, 3, 4]
        assert [q.get("timestamp") for q in fetch.queries] == [None, "5", "5", "6"]

    def test_full_page_without_new_records(self):
        fetch = RecordingFetch(
            {"results": [tick(5, 1), tick(5, 2)]},
            {"results": [tick(5, 1), tick(5, 2)]},
        )
        with pytest.raises(PaginationError):
            Paginator().collect_by_timestamp(fetch, limit=2)

    def test_boundary_moving_backwards(self):
        fetch = RecordingFetch(
            {"results": [tick(5, 1), tick(6, 2)]},
            {"results": [tick(3, 3), tick(4, 4)]},
        )
        with pytest.raises(PaginationError):
            Paginator().collect_by_timestamp(fetch, limit=2)

    def test_custom_keys(self):
        rows = [{"sip_timestamp": 1, "sequence_number": 1}]
        fetch = RecordingFetch({"results": rows})
        result = Paginator().collect_by_timestamp(
            fetch, limit=2, timestamp_key="sip_timestamp", id_key="sequence_number"
        )
        assert result == rows

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            Paginator().collect_by_timestamp(RecordingFetch(), limit=0)
