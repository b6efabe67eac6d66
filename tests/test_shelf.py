from __future__ import annotations

from shelf import (
    BOOK_STATUSES,
    available_categories,
    filter_books,
    group_by_status,
    seeded_shuffle,
    sort_books,
    sort_categories_by_relevance,
)


def _book(title: str, author: str, status: str = "want-to-read", **extra) -> dict:
    return {"title": title, "author": author, "status": status, **extra}


def test_seeded_shuffle_is_deterministic_and_leaves_input_alone() -> None:
    items = list(range(10))
    first = seeded_shuffle(items, 42)
    second = seeded_shuffle(items, 42)

    assert first == second
    assert sorted(first) == items
    assert items == list(range(10))


def test_seeded_shuffle_matches_lcg_sequence() -> None:
    # seed 1 -> 58598 / 233280 = 0.2511..., so j = floor(0.2511 * 3) = 0 for i = 2
    # next state 127215 -> 0.5453..., j = floor(0.5453 * 2) = 1 for i = 1
    assert seeded_shuffle(["a", "b", "c"], 1) == ["c", "b", "a"]


def test_seeded_shuffle_handles_small_inputs() -> None:
    assert seeded_shuffle([], 3) == []
    assert seeded_shuffle(["only"], 3) == ["only"]


def test_sort_books_status_author() -> None:
    books = [
        _book("C", "zed", "read"),
        _book("B", "Amy", "want-to-read"),
        _book("A", "bob", "reading"),
        _book("D", "alice", "reading"),
    ]
    ordered = sort_books(books, "status-author")
    assert [book["title"] for book in ordered] == ["D", "A", "B", "C"]


def test_sort_books_author_title_is_case_insensitive() -> None:
    books = [_book("beta", "Smith"), _book("Alpha", "smith"), _book("Zulu", "adams")]
    ordered = sort_books(books, "author-title")
    assert [book["title"] for book in ordered] == ["Zulu", "Alpha", "beta"]


def test_sort_books_recent_puts_undated_books_last() -> None:
    books = [
        _book("Old", "A", created_at="2024-01-01T00:00:00+00:00"),
        _book("Undated", "B"),
        _book("New", "C", created_at="2025-06-01T12:00:00Z"),
    ]
    ordered = sort_books(books, "recent")
    assert [book["title"] for book in ordered] == ["New", "Old", "Undated"]


def test_sort_books_random_uses_seed_and_unknown_keeps_order() -> None:
    books = [_book(str(index), "A") for index in range(6)]
    assert sort_books(books, "random", seed=5) == seeded_shuffle(books, 5)
    assert sort_books(books, "shelf-order") == books


def test_sort_categories_by_relevance() -> None:
    ordered = sort_categories_by_relevance(["Zoology", "History", "Fiction", "Art History"])
    assert ordered == ["Fiction", "History", "Art History", "Zoology"]
    assert sort_categories_by_relevance([]) == []
    assert sort_categories_by_relevance(None) == []


def test_filter_books_by_status_and_category() -> None:
    books = [
        _book("Dune", "Herbert", "read", categories=["Fiction", "Science Fiction"]),
        _book("Sapiens", "Harari", "reading", categories=["History"]),
        _book("Blank", "Nobody", "reading"),
    ]

    assert filter_books(books) == books
    assert [b["title"] for b in filter_books(books, statuses=["reading"])] == ["Sapiens", "Blank"]
    assert [b["title"] for b in filter_books(books, categories=["History", "Fiction"])] == ["Dune", "Sapiens"]
    assert filter_books(books, statuses=["read"], categories=["History"]) == []


def test_group_by_status_includes_every_status() -> None:
    groups = group_by_status([_book("A", "x", "read")])
    assert set(groups) == set(BOOK_STATUSES)
    assert [b["title"] for b in groups["read"]] == ["A"]
    assert groups["reading"] == []


def test_available_categories_dedupes_and_ranks() -> None:
    books = [
        _book("A", "x", categories=["Poetry", "Fiction"]),
        _book("B", "y", categories=["Fiction", "Gardening"]),
        _book("C", "z"),
    ]
    assert available_categories(books) == ["Fiction", "Poetry", "Gardening"]
