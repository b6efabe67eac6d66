from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

import catalog
from catalog import (
    OpenLibraryQuery,
    best_isbndb_match,
    best_open_library_match,
    doc_to_volume,
    merge_search_results,
    rank_docs,
    sanitize_query,
    search_books,
    search_isbndb,
    volume_to_book,
)


def _volume(title: str, cover: Optional[str] = None, **info: Any) -> Dict[str, Any]:
    volume_info: Dict[str, Any] = {"title": title, **info}
    if cover:
        volume_info["imageLinks"] = {"thumbnail": cover}
    return {"id": title, "volumeInfo": volume_info}


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return self._payload


def test_sanitize_query() -> None:
    assert sanitize_query(None) is None
    assert sanitize_query(42) is None
    assert sanitize_query("  a ") is None
    assert sanitize_query("<b>Dune</b>;") == "bDune/b"
    assert sanitize_query("x" * 300) == "x" * 200


def test_merge_prefers_covers_then_fills() -> None:
    primary = [_volume("Alpha"), _volume("Beta", cover="http://img/b")]
    secondary = [_volume("alpha", cover="http://img/a"), _volume("Gamma", cover="http://img/c"), _volume("Delta")]

    merged = merge_search_results(primary, secondary)

    assert [item["volumeInfo"]["title"] for item in merged] == ["Beta", "alpha", "Gamma", "Delta"]


def test_merge_caps_results_and_skips_untitled() -> None:
    primary = [_volume(f"Book {index}", cover="http://img") for index in range(10)]
    secondary = [_volume(f"Other {index}") for index in range(10)] + [{"id": "x", "volumeInfo": {}}]

    merged = merge_search_results(primary, secondary, limit=12)

    assert len(merged) == 12
    assert all(item["volumeInfo"].get("title") for item in merged)


@pytest.mark.parametrize(
    "open_library, google, expected",
    [
        ([_volume("A")], [_volume("B")], "combined"),
        ([_volume("A")], [], "openlibrary"),
        ([], [_volume("B")], "google"),
        ([], [], "none"),
    ],
)
def test_search_books_reports_source(monkeypatch, open_library, google, expected) -> None:
    monkeypatch.setattr(catalog, "search_open_library", lambda query: open_library)
    monkeypatch.setattr(catalog, "search_google_books", lambda query, api_key=None: google)

    result = search_books("dune")

    assert result["source"] == expected
    assert len(result["items"]) == len(open_library) + len(google)


def test_search_books_rejects_short_queries(monkeypatch) -> None:
    def explode(*args, **kwargs):
        raise AssertionError("no upstream call expected")

    monkeypatch.setattr(catalog, "search_open_library", explode)
    monkeypatch.setattr(catalog, "search_google_books", explode)

    assert search_books("a") == {"items": [], "source": "none"}


def test_doc_to_volume_shapes_open_library_docs() -> None:
    doc = {
        "key": "/works/OL45804W",
        "title": "Fantastic Mr Fox",
        "author_name": ["Roald Dahl"],
        "cover_i": 6498519,
        "first_publish_year": 1970,
        "subject": ["Foxes", "Farmers", "Juvenile fiction", "Animals"],
    }

    volume = doc_to_volume(doc)

    assert volume["id"] == "ol-/works/OL45804W"
    info = volume["volumeInfo"]
    assert info["imageLinks"]["thumbnail"] == "https://covers.openlibrary.org/b/id/6498519-M.jpg"
    assert info["imageLinks"]["smallThumbnail"] == "https://covers.openlibrary.org/b/id/6498519-S.jpg"
    assert info["categories"] == ["Foxes", "Farmers", "Juvenile fiction"]
    assert info["publishedDate"] == "1970"
    assert info["infoLink"] == "https://openlibrary.org/works/OL45804W"


def test_search_open_library_converts_docs(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_get_json(url, *, params=None, headers=None):
        captured.update(params)
        return {"docs": [{"key": "/works/1", "title": "One"}]}

    monkeypatch.setattr(catalog, "_get_json", fake_get_json)

    volumes = catalog.search_open_library("one")

    assert captured["limit"] == "12"
    assert volumes[0]["id"] == "ol-/works/1"


def test_volume_to_book_normalizes_fields() -> None:
    volume = _volume(
        " Dune ",
        cover="http://books.google.com/books/content?id=1&zoom=1",
        authors=["Frank Herbert", "Brian Herbert"],
        categories=["Fiction", "A", "B", "C", "D", "E"],
        pageCount=412,
        industryIdentifiers=[
            {"type": "ISBN_10", "identifier": "0441013597"},
            {"type": "ISBN_13", "identifier": "9780441013593"},
        ],
    )

    book = volume_to_book(volume)

    assert book["title"] == "Dune"
    assert book["author"] == "Frank Herbert, Brian Herbert"
    assert book["isbn"] == "9780441013593"
    assert book["page_count"] == 412
    assert book["categories"] == ["Fiction", "A", "B", "C", "D"]
    assert book["cover_url"] == "https://books.google.com/books/content?id=1&zoom=2&edge=curl"


def test_volume_to_book_defaults_author() -> None:
    book = volume_to_book(_volume("Anonymous Work"))
    assert book["author"] == "Unknown Author"
    assert book["cover_url"] is None
    assert book["categories"] is None


def test_rank_docs_prefers_exact_title_and_author() -> None:
    docs: List[Dict[str, Any]] = [
        {"title": "Dune Messiah", "author_name": ["Frank Herbert"]},
        {"title": "Dune", "author_name": ["Frank Herbert"], "edition_count": 5},
        {"title": "Dune", "author_name": ["Someone Else"]},
    ]

    ranked = rank_docs(OpenLibraryQuery(title="Dune", author="Frank Herbert"), docs)

    assert ranked[0] is docs[1]


def test_best_open_library_match_queries_by_title_and_author(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_get_json(url, *, params=None, headers=None):
        captured.update(params or {})
        return {
            "docs": [
                {"title": "Dune Messiah", "author_name": ["Frank Herbert"]},
                {"title": "Dune", "author_name": ["Frank Herbert"]},
            ],
            "num_found": 2,
        }

    monkeypatch.setattr(catalog, "_get_json", fake_get_json)

    match = best_open_library_match("Dune", "Frank Herbert")

    assert match is not None and match["title"] == "Dune"
    assert captured["title"] == "Dune"
    assert captured["author"] == "Frank Herbert"
    assert captured["limit"] == "5"


def test_best_isbndb_match() -> None:
    books = [{"title": "Something Else"}, {"title": "The Name of the Wind (Kingkiller Chronicle)"}]
    assert best_isbndb_match(books, "The Name of the Wind") is books[1]
    assert best_isbndb_match([{"title": "Other"}], "Missing") == {"title": "Other"}
    assert best_isbndb_match([], "Anything") is None


@pytest.mark.parametrize("status_code", [404, 429, 500])
def test_search_isbndb_swallows_provider_errors(monkeypatch, status_code) -> None:
    monkeypatch.setattr(catalog.requests, "get", lambda *args, **kwargs: _FakeResponse(status_code))
    assert search_isbndb("dune herbert", "key") == []


def test_search_isbndb_returns_books(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_get(url, params=None, headers=None, timeout=None):
        captured.update(url=url, params=params, headers=headers)
        return _FakeResponse(200, {"books": [{"title": "Dune"}]})

    monkeypatch.setattr(catalog.requests, "get", fake_get)

    assert search_isbndb("dune herbert", "secret", page_size=3) == [{"title": "Dune"}]
    assert captured["url"] == "https://api2.isbndb.com/books/dune%20herbert"
    assert captured["params"] == {"pageSize": "3"}
    assert captured["headers"]["Authorization"] == "secret"
