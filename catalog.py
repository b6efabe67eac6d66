from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from config import get_settings
from media import normalize_cover_url

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
ISBNDB_BOOKS_URL = "https://api2.isbndb.com/books/{query}"
COVER_URL_TEMPLATE = "https://covers.openlibrary.org/b/id/{cover_id}-{size}.jpg"

SEARCH_LIMIT = 12
MAX_QUERY_LENGTH = 200
_UNSAFE_QUERY_CHARS = re.compile(r"[<>'\"`;\\]")

DEFAULT_API_FIELDS = [
    "key",
    "title",
    "author_name",
    "cover_i",
    "edition_count",
    "number_of_pages_median",
    "isbn",
    "subject",
]


@dataclass
class OpenLibraryQuery:
    """A fielded title/author search against Open Library."""

    title: Optional[str] = None
    author: Optional[str] = None
    limit: int = 5
    fields: List[str] = field(default_factory=lambda: list(DEFAULT_API_FIELDS))

    def to_params(self) -> Dict[str, str]:
        params = {"limit": str(self.limit)}
        if self.title:
            params["title"] = self.title
        if self.author:
            params["author"] = self.author
        if self.fields:
            params["fields"] = ",".join(self.fields)
        return params


def sanitize_query(raw: Any) -> Optional[str]:
    """Return a query safe to forward upstream, or None when it is too short to search."""
    if not isinstance(raw, str):
        return None
    query = raw[:MAX_QUERY_LENGTH].strip()
    if len(query) < 2:
        return None
    query = _UNSAFE_QUERY_CHARS.sub("", query)
    return query or None


def _get_json(url: str, *, params: Optional[Dict[str, str]] = None, headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
    try:
        response = requests.get(
            url,
            params=params,
            headers=headers,
            timeout=get_settings().http_timeout,
        )
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as error:
        logger.warning("Request to %s failed: %s", url, error)
        return None


# --------------------------------------------------------------------------- #
# Open Library
# --------------------------------------------------------------------------- #
def fetch_records(query: OpenLibraryQuery) -> Tuple[List[Dict[str, Any]], int]:
    """Fetch matching records from the Open Library Search API, best match first."""
    data = _get_json(OPEN_LIBRARY_SEARCH_URL, params=query.to_params())
    if not isinstance(data, dict):
        return [], 0

    ranked = rank_docs(query, data.get("docs") or [])
    return ranked, data.get("num_found", len(ranked))


def _similarity(target: str, candidate: str) -> float:
    return SequenceMatcher(None, target, candidate).ratio()


def rank_docs(query: OpenLibraryQuery, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order docs by title and author closeness. Ties keep the API's order."""
    wanted_title = (query.title or "").lower()
    wanted_author = (query.author or "").lower()

    def score(doc: Dict[str, Any]) -> float:
        total = 0.0
        title = (doc.get("title") or "").lower()
        if wanted_title:
            total += 5.0 * _similarity(wanted_title, title)
            if title == wanted_title:
                total += 2.0
            elif wanted_title in title:
                total += 1.0

        authors = [name.lower() for name in doc.get("author_name") or []]
        if wanted_author and authors:
            total += 4.0 * max(_similarity(wanted_author, name) for name in authors)
            if any(wanted_author in name for name in authors):
                total += 2.0

        editions = doc.get("edition_count")
        if isinstance(editions, int):
            total += min(editions, 5) * 0.1
        return total

    order = sorted(range(len(docs)), key=lambda index: (-score(docs[index]), index))
    return [docs[index] for index in order]


def best_open_library_match(title: str, author: str, *, limit: int = 5) -> Optional[Dict[str, Any]]:
    query = OpenLibraryQuery(title=title, author=author or None, limit=limit)
    docs, _total = fetch_records(query)
    return docs[0] if docs else None


def doc_to_volume(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape an Open Library doc into the Google Books volume layout."""
    cover_id = doc.get("cover_i")
    image_links = None
    if cover_id:
        image_links = {
            "thumbnail": COVER_URL_TEMPLATE.format(cover_id=cover_id, size="M"),
            "smallThumbnail": COVER_URL_TEMPLATE.format(cover_id=cover_id, size="S"),
        }
    year = doc.get("first_publish_year")
    volume_info: Dict[str, Any] = {
        "title": doc.get("title"),
        "authors": doc.get("author_name"),
        "publishedDate": str(year) if year else None,
        "categories": (doc.get("subject") or [])[:3],
        "infoLink": f"https://openlibrary.org{doc.get('key')}",
    }
    if image_links:
        volume_info["imageLinks"] = image_links
    if doc.get("number_of_pages_median"):
        volume_info["pageCount"] = doc["number_of_pages_median"]
    if doc.get("isbn"):
        volume_info["industryIdentifiers"] = [
            {"type": "ISBN_13" if len(str(value)) == 13 else "ISBN_10", "identifier": str(value)}
            for value in doc["isbn"][:2]
        ]
    return {"id": f"ol-{doc.get('key')}", "volumeInfo": volume_info}


def search_open_library(query: str, *, limit: int = SEARCH_LIMIT) -> List[Dict[str, Any]]:
    data = _get_json(
        OPEN_LIBRARY_SEARCH_URL,
        params={
            "q": query,
            "limit": str(limit),
            "fields": "key,title,author_name,cover_i,first_publish_year,subject",
        },
    )
    if not isinstance(data, dict):
        return []
    return [doc_to_volume(doc) for doc in data.get("docs") or []]


# --------------------------------------------------------------------------- #
# Google Books
# --------------------------------------------------------------------------- #
def search_google_books(
    query: str,
    *,
    api_key: Optional[str] = None,
    max_results: int = SEARCH_LIMIT,
) -> List[Dict[str, Any]]:
    params = {"q": query, "maxResults": str(max_results), "printType": "books"}
    if api_key:
        params["key"] = api_key
    data = _get_json(GOOGLE_BOOKS_URL, params=params)
    if not isinstance(data, dict):
        return []
    return data.get("items") or []


def volume_isbn(volume_info: Dict[str, Any]) -> Optional[str]:
    """ISBN-13 when present, otherwise ISBN-10."""
    identifiers = volume_info.get("industryIdentifiers") or []
    for wanted in ("ISBN_13", "ISBN_10"):
        for identifier in identifiers:
            if identifier.get("type") == wanted and identifier.get("identifier"):
                return str(identifier["identifier"])
    return None


def volume_cover(volume_info: Dict[str, Any]) -> Optional[str]:
    links = volume_info.get("imageLinks") or {}
    thumbnail = links.get("thumbnail") or links.get("smallThumbnail")
    if not thumbnail:
        return None
    return normalize_cover_url(str(thumbnail).replace("http://", "https://"))


# --------------------------------------------------------------------------- #
# Combined search
# --------------------------------------------------------------------------- #
def _title_key(volume: Dict[str, Any]) -> Optional[str]:
    title = (volume.get("volumeInfo") or {}).get("title")
    if not title:
        return None
    return str(title).lower().strip() or None


def _has_cover(volume: Dict[str, Any]) -> bool:
    links = (volume.get("volumeInfo") or {}).get("imageLinks") or {}
    return bool(links.get("thumbnail"))


def merge_search_results(
    primary: List[Dict[str, Any]],
    secondary: List[Dict[str, Any]],
    *,
    limit: int = SEARCH_LIMIT,
) -> List[Dict[str, Any]]:
    """Dedupe on title, favouring results with a cover, primary source first."""
    seen = set()
    results: List[Dict[str, Any]] = []

    for volume in [*primary, *secondary]:
        key = _title_key(volume)
        if key and key not in seen and _has_cover(volume):
            seen.add(key)
            results.append(volume)

    for volume in [*primary, *secondary]:
        if len(results) >= limit:
            break
        key = _title_key(volume)
        if key and key not in seen:
            seen.add(key)
            results.append(volume)

    return results[:limit]


def search_books(raw_query: Any) -> Dict[str, Any]:
    """Search Open Library and Google Books and merge the two result sets."""
    query = sanitize_query(raw_query)
    if query is None:
        return {"items": [], "source": "none"}

    logger.info("Searching for %r", query)
    google_results = search_google_books(query, api_key=get_settings().google_books_api_key)
    open_library_results = search_open_library(query)
    logger.info(
        "Google: %d results, Open Library: %d results",
        len(google_results),
        len(open_library_results),
    )

    merged = merge_search_results(open_library_results, google_results)
    if open_library_results and google_results:
        source = "combined"
    elif open_library_results:
        source = "openlibrary"
    elif google_results:
        source = "google"
    else:
        source = "none"
    return {"items": merged, "source": source}


def volume_to_book(volume: Dict[str, Any]) -> Dict[str, Any]:
    """Create a shelf-ready book payload from a search result."""
    info = volume.get("volumeInfo") or {}
    authors = info.get("authors") or []
    categories = info.get("categories") or []
    page_count = info.get("pageCount")
    return {
        "title": (info.get("title") or "").strip(),
        "author": ", ".join(str(author) for author in authors if author) or "Unknown Author",
        "cover_url": volume_cover(info),
        "isbn": volume_isbn(info),
        "categories": [str(category) for category in categories if category][:5] or None,
        "page_count": int(page_count) if isinstance(page_count, int) and page_count > 0 else None,
        "description": info.get("description"),
    }


# --------------------------------------------------------------------------- #
# ISBNdb
# --------------------------------------------------------------------------- #
def search_isbndb(query: str, api_key: str, *, page_size: int = 1) -> List[Dict[str, Any]]:
    """Search ISBNdb by free text. Rate limits, misses and errors all yield []."""
    url = ISBNDB_BOOKS_URL.format(query=quote(query, safe=""))
    try:
        response = requests.get(
            url,
            params={"pageSize": str(page_size)},
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            timeout=get_settings().http_timeout,
        )
    except requests.RequestException as error:
        logger.warning("ISBNdb fetch error: %s", error)
        return []

    if response.status_code == 429:
        logger.info("Rate limited by ISBNdb")
        return []
    if response.status_code == 404:
        return []
    if not response.ok:
        logger.info("ISBNdb error: %s", response.status_code)
        return []

    try:
        data = response.json()
    except ValueError:
        return []
    return (data or {}).get("books") or []


def best_isbndb_match(books: List[Dict[str, Any]], title: str) -> Optional[Dict[str, Any]]:
    if not books:
        return None
    wanted = title.lower()
    for book in books:
        candidate = (book.get("title") or book.get("title_long") or "").lower()
        if candidate and (wanted in candidate or candidate in wanted):
            return book
    return books[0]
