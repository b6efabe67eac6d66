from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")

BOOK_STATUSES = ("reading", "want-to-read", "read")
SORT_OPTIONS = ("random", "recent", "status-author", "author-title")

STATUS_ORDER: Dict[str, int] = {status: index for index, status in enumerate(BOOK_STATUSES)}

# Ordered by how often each genre shows up across all shelves.
CATEGORY_PRIORITY: List[str] = [
    "Fiction",
    "Science Fiction",
    "Fantasy",
    "Comics & Graphic Novels",
    "Action & Adventure",
    "Religion",
    "Business & Economics",
    "History",
    "Literature & Fiction",
    "Science Fiction & Fantasy",
    "Biography & Autobiography",
    "Horror",
    "Computers",
    "Epic",
    "Self-Help",
    "Thrillers",
    "Crime & Mystery",
    "Military",
    "Science",
    "Juvenile Fiction",
    "Mystery",
    "Romance",
    "Psychology",
    "Philosophy",
    "Poetry",
    "Drama",
    "Art",
    "Music",
    "Cooking",
    "Health & Fitness",
    "Sports & Recreation",
    "Travel",
    "Education",
    "Politics",
    "Social Science",
    "Technology",
    "Nature",
    "Humor",
    "Memoir",
    "Nonfiction",
]

_CATEGORY_RANK = {name: index for index, name in enumerate(CATEGORY_PRIORITY)}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Shuffle a copy of ``items`` with a small LCG so a seed always yields the same order."""
    result = list(items)
    state = seed

    def random() -> float:
        nonlocal state
        state = (state * 9301 + 49297) % 233280
        return state / 233280

    for i in range(len(result) - 1, 0, -1):
        j = int(random() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


def _text(value: Any) -> str:
    return str(value or "").casefold()


def _created(book: Dict[str, Any]) -> datetime:
    value = book.get("created_at")
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_books(books: Sequence[Dict[str, Any]], option: str, seed: int = 0) -> List[Dict[str, Any]]:
    if option == "random":
        return seeded_shuffle(books, seed)
    if option == "recent":
        return sorted(books, key=_created, reverse=True)
    if option == "status-author":
        return sorted(
            books,
            key=lambda book: (STATUS_ORDER.get(book.get("status"), len(STATUS_ORDER)), _text(book.get("author"))),
        )
    if option == "author-title":
        return sorted(books, key=lambda book: (_text(book.get("author")), _text(book.get("title"))))
    return list(books)


def sort_categories_by_relevance(categories: Optional[Iterable[str]]) -> List[str]:
    """Known genres first in priority order, everything else alphabetically after them."""
    if not categories:
        return []

    def key(category: str):
        rank = _CATEGORY_RANK.get(category)
        if rank is not None:
            return (0, rank, "")
        return (1, 0, category.casefold())

    return sorted(categories, key=key)


def filter_books(
    books: Iterable[Dict[str, Any]],
    statuses: Optional[Iterable[str]] = None,
    categories: Optional[Iterable[str]] = None,
) -> List[Dict[str, Any]]:
    wanted_statuses = set(statuses or [])
    wanted_categories = set(categories or [])
    filtered = []
    for book in books:
        if wanted_statuses and book.get("status") not in wanted_statuses:
            continue
        if wanted_categories and not wanted_categories.intersection(book.get("categories") or []):
            continue
        filtered.append(book)
    return filtered


def group_by_status(books: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {status: [] for status in BOOK_STATUSES}
    for book in books:
        groups.setdefault(book.get("status") or "want-to-read", []).append(book)
    return groups


def available_categories(books: Iterable[Dict[str, Any]]) -> List[str]:
    seen: Dict[str, None] = {}
    for book in books:
        for category in book.get("categories") or []:
            if category:
                seen.setdefault(category, None)
    return sort_categories_by_relevance(seen)
