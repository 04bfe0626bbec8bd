#!/usr/bin/env python3
"""
Cursor pagination tests.

Usage:
    python -m pytest tests/test_pagination.py -v
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def paged_source(ids, has_more_flag=True):
    """fetch_page over a fixed id list, cursor = last id of previous page."""
    from evalcore.pagination import Page

    calls = []

    def fetch(after, limit):
        calls.append(after)
        start = ids.index(after) + 1 if after else 0
        chunk = ids[start:start + limit]
        has_more = start + limit < len(ids) if has_more_flag else len(chunk) >= limit
        return Page(items=chunk, has_more=has_more, last_id=chunk[-1] if chunk else None)

    return fetch, calls


class TestResolveHasMore:
    """has_more: backend flag first, page-size heuristic as fallback."""

    def test_backend_flag_wins(self):
        from evalcore.pagination import resolve_has_more

        items = [1, 2, 3]
        assert resolve_has_more({"data": items, "has_more": False}, items, 3) is False
        assert resolve_has_more({"data": [1], "has_more": True}, [1], 3) is True

    def test_full_page_without_flag(self):
        from evalcore.pagination import resolve_has_more

        assert resolve_has_more([1, 2, 3], [1, 2, 3], 3) is True
        assert resolve_has_more({"data": [1, 2, 3]}, [1, 2, 3], 3) is True

    def test_short_page_without_flag(self):
        from evalcore.pagination import resolve_has_more

        assert resolve_has_more([1, 2], [1, 2], 3) is False
        assert resolve_has_more([], [], 3) is False

    def test_last_id(self):
        from evalcore.pagination import resolve_last_id

        assert resolve_last_id({"last_id": "x9"}, ["a"], lambda i: i) == "x9"
        assert resolve_last_id([], ["a", "b"], lambda i: i) == "b"
        assert resolve_last_id([], [], lambda i: i) is None


class TestIterPages:
    """Following after-cursors."""

    def test_collects_everything_in_order(self):
        from evalcore.pagination import collect_all

        ids = [f"id{i}" for i in range(7)]
        fetch, calls = paged_source(ids)

        assert collect_all(fetch, 3) == ids
        assert calls == [None, "id2", "id5"]

    def test_heuristic_costs_one_empty_fetch_on_page_boundary(self):
        from evalcore.pagination import collect_all

        ids = [f"id{i}" for i in range(6)]
        fetch, calls = paged_source(ids, has_more_flag=False)

        assert collect_all(fetch, 3) == ids
        assert calls == [None, "id2", "id5"]

    def test_max_pages(self):
        from evalcore.pagination import iter_pages

        ids = [f"id{i}" for i in range(10)]
        fetch, calls = paged_source(ids)

        pages = list(iter_pages(fetch, 2, max_pages=2))
        assert len(pages) == 2
        assert len(calls) == 2

    def test_stuck_cursor_stops(self):
        from evalcore.pagination import Page, collect_all

        def fetch(after, limit):
            return Page(items=["same"], has_more=True, last_id="same")

        assert collect_all(fetch, 1) == ["same", "same"]

    def test_page_to_dict(self):
        from evalcore.pagination import Page

        page = Page(items=[1, 2], has_more=True, last_id="2")
        assert page.to_dict(lambda i: {"n": i}) == {
            "data": [{"n": 1}, {"n": 2}],
            "has_more": True,
            "last_id": "2",
        }
