"""
Cursor pagination helpers for the evaluation service list endpoints.

Lists are fetched with limit/after cursors. Some endpoints return an explicit
has_more flag; others return a bare array, where the only signal is whether a
full page came back.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    has_more: bool = False
    last_id: Optional[str] = None

    def to_dict(self, item_to_dict: Callable[[T], Any] = lambda item: item) -> dict:
        return {
            "data": [item_to_dict(item) for item in self.items],
            "has_more": self.has_more,
            "last_id": self.last_id,
        }


def resolve_has_more(payload: Any, items: list, limit: int) -> bool:
    """
    Prefer the backend's own has_more flag.

    Without one, a page holding exactly `limit` items is assumed to have a
    successor. That guess is wrong when the result set ends on a page
    boundary (one extra empty fetch follows).
    """
    if isinstance(payload, dict) and isinstance(payload.get("has_more"), bool):
        return payload["has_more"]
    return limit > 0 and len(items) >= limit


def resolve_last_id(payload: Any, items: list, get_id: Callable[[Any], Optional[str]]) -> Optional[str]:
    if isinstance(payload, dict) and payload.get("last_id"):
        return payload["last_id"]
    if items:
        return get_id(items[-1])
    return None


def iter_pages(fetch_page: Callable[[Optional[str], int], Page[T]], limit: int,
               max_pages: Optional[int] = None) -> Iterator[Page[T]]:
    """Follow after-cursors until the service reports no more pages."""
    after = None
    fetched = 0
    while True:
        page = fetch_page(after, limit)
        fetched += 1
        yield page
        if not page.items or not page.has_more or not page.last_id:
            return
        if page.last_id == after:
            return
        if max_pages is not None and fetched >= max_pages:
            return
        after = page.last_id


def collect_all(fetch_page: Callable[[Optional[str], int], Page[T]], limit: int,
                max_pages: Optional[int] = None) -> List[T]:
    items: List[T] = []
    for page in iter_pages(fetch_page, limit, max_pages=max_pages):
        items.extend(page.items)
    return items
