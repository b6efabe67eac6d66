from __future__ import annotations

import html
import logging
import re
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple

from catalog import (
    COVER_URL_TEMPLATE,
    OPEN_LIBRARY_SEARCH_URL,
    _get_json,
    best_isbndb_match,
    best_open_library_match,
    search_google_books,
    search_isbndb,
    volume_cover,
    volume_isbn,
)
from config import get_settings

logger = logging.getLogger(__name__)

MAX_DESCRIPTION = 2000
MAX_CATEGORIES = 5
MAX_TITLE = 200
MAX_AUTHOR = 100

_SERIES_PATTERNS = [
    re.compile(r"\s*\([^)]*#\d+[^)]*\)\s*", re.IGNORECASE),
    re.compile(r"\s*#\d+\s*", re.IGNORECASE),
    re.compile(r"\s*,?\s*book\s+\d+\s*", re.IGNORECASE),
    re.compile(r"\s*,?\s*vol\.?\s*\d+\s*", re.IGNORECASE),
]
_TAGS = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class BookMetadata:
    page_count: Optional[int] = None
    isbn: Optional[str] = None
    description: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    cover_url: Optional[str] = None
    source: Optional[str] = None

    def has_data(self) -> bool:
        return bool(self.page_count or self.isbn or self.description or self.categories or self.cover_url)

    def to_dict(self) -> Dict[str, Any]:
        data = {key: value for key, value in asdict(self).items() if value}
        return data


def clean_title(title: str) -> str:
    """Drop series notation such as "(Expanse #1)", "Book 2" or "Vol. 3"."""
    cleaned = title
    for pattern in _SERIES_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def strip_html(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    stripped = html.unescape(_TAGS.sub("", text)).replace("\xa0", " ")
    return _WHITESPACE.sub(" ", stripped).strip() or None


def _truncate(text: Optional[str]) -> Optional[str]:
    return text[:MAX_DESCRIPTION] if text else None


def merge_metadata(records: List[BookMetadata]) -> BookMetadata:
    """Combine lookups in priority order: earlier records win, later ones fill gaps."""
    merged = BookMetadata()
    for record in records:
        if not merged.page_count and record.page_count:
            merged.page_count = record.page_count
        if not merged.isbn and record.isbn:
            merged.isbn = record.isbn
        if not merged.description and record.description:
            merged.description = record.description
        if not merged.categories and record.categories:
            merged.categories = list(record.categories)
        if not merged.cover_url and record.cover_url:
            merged.cover_url = record.cover_url
        if not merged.source and record.has_data():
            merged.source = record.source
    return merged


# --------------------------------------------------------------------------- #
# Source adapters
# --------------------------------------------------------------------------- #
def metadata_from_volume(volume: Dict[str, Any]) -> BookMetadata:
    info = volume.get("volumeInfo") or {}
    page_count = info.get("pageCount")
    return BookMetadata(
        page_count=page_count if isinstance(page_count, int) and page_count > 0 else None,
        isbn=volume_isbn(info),
        description=_truncate(strip_html(info.get("description"))),
        categories=[str(item) for item in (info.get("categories") or [])][:MAX_CATEGORIES],
        cover_url=volume_cover(info),
        source="google",
    )


def metadata_from_isbndb(book: Dict[str, Any]) -> BookMetadata:
    image = book.get("image")
    pages = book.get("pages")
    return BookMetadata(
        page_count=pages if isinstance(pages, int) and pages > 0 else None,
        isbn=book.get("isbn13") or book.get("isbn"),
        description=_truncate(strip_html(book.get("synopsis") or book.get("overview"))),
        categories=[str(item) for item in (book.get("subjects") or [])][:MAX_CATEGORIES],
        cover_url=image if image and "placeholder" not in image else None,
        source="isbndb",
    )


def metadata_from_open_library(doc: Dict[str, Any]) -> BookMetadata:
    isbns = doc.get("isbn") or []
    cover_id = doc.get("cover_i")
    return BookMetadata(
        page_count=doc.get("number_of_pages_median"),
        isbn=str(isbns[0]) if isbns else None,
        categories=[str(item) for item in (doc.get("subject") or [])][:MAX_CATEGORIES],
        cover_url=COVER_URL_TEMPLATE.format(cover_id=cover_id, size="M") if cover_id else None,
        source="openlibrary",
    )


# --------------------------------------------------------------------------- #
# Lookups
# --------------------------------------------------------------------------- #
def fetch_google_metadata(title: str, author: str) -> Optional[BookMetadata]:
    """Try progressively looser Google Books queries until one returns usable data."""
    cleaned = clean_title(title)
    queries = [
        f"intitle:{cleaned} inauthor:{author}",
        f'"{cleaned}" {author}',
        f"{cleaned} {author}",
    ]
    api_key = get_settings().google_books_api_key
    for query in queries:
        items = search_google_books(query, api_key=api_key, max_results=1)
        if not items:
            continue
        metadata = metadata_from_volume(items[0])
        if metadata.page_count or metadata.description or metadata.categories:
            return metadata
    return None


def fetch_open_library_metadata(title: str, author: str) -> Optional[BookMetadata]:
    doc = best_open_library_match(clean_title(title), author)
    return metadata_from_open_library(doc) if doc else None


def fetch_isbndb_metadata(title: str, author: str, *, page_size: int = 5) -> Optional[BookMetadata]:
    api_key = get_settings().isbndb_api_key
    if not api_key:
        return None
    cleaned = clean_title(title)
    match = best_isbndb_match(search_isbndb(f"{cleaned} {author}", api_key, page_size=page_size), cleaned)
    return metadata_from_isbndb(match) if match else None


def lookup_metadata(title: str, author: str) -> Optional[BookMetadata]:
    """Google Books first; Open Library fills in when Google has neither pages nor ISBN."""
    google = fetch_google_metadata(title, author)
    if google and (google.page_count or google.isbn):
        return google

    open_library = fetch_open_library_metadata(title, author)
    if open_library is None:
        return google
    # Google descriptions are kept, Open Library never supplies one.
    merged = merge_metadata([google or BookMetadata(), open_library])
    merged.cover_url = None
    return merged if merged.has_data() else None


def enrich_book(title: str, author: Optional[str]) -> BookMetadata:
    """ISBNdb first, Google Books for whatever is still missing. Lookup failures are logged."""
    safe_title = (title or "")[:MAX_TITLE].strip()
    safe_author = (author or "Unknown")[:MAX_AUTHOR].strip()
    if not safe_title:
        raise ValueError("Title is required")

    logger.info("Enriching %r by %s", safe_title, safe_author)
    records: List[BookMetadata] = []
    try:
        isbndb = fetch_isbndb_metadata(safe_title, safe_author)
        if isbndb:
            records.append(isbndb)

        current = merge_metadata(records)
        if not current.page_count or not current.description or not current.cover_url:
            google_items = search_google_books(
                f"{safe_title} {safe_author}",
                api_key=get_settings().google_books_api_key,
                max_results=3,
            )
            for item in google_items:
                candidate = metadata_from_volume(item)
                if candidate.cover_url or candidate.page_count or candidate.description:
                    records.append(candidate)
                    break
    except Exception:
        logger.exception("Enrichment failed for %r", safe_title)

    result = merge_metadata(records)
    logger.info("Enrichment %s for %r", "successful" if result.has_data() else "empty", safe_title)
    return result


def find_cover(title: str, author: str) -> Optional[str]:
    """ISBNdb, then Google Books, then Open Library."""
    settings = get_settings()
    cleaned = clean_title(title)

    if settings.isbndb_api_key:
        for book in search_isbndb(f"{cleaned} {author}", settings.isbndb_api_key, page_size=3):
            image = book.get("image")
            if image and "placeholder" not in image:
                logger.debug("Found cover for %r via ISBNdb", title)
                return image

    for item in search_google_books(f"{title} {author}", api_key=settings.google_books_api_key, max_results=3):
        cover = volume_cover(item.get("volumeInfo") or {})
        if cover:
            logger.debug("Found cover for %r via Google Books", title)
            return cover

    data = _get_json(
        OPEN_LIBRARY_SEARCH_URL,
        params={"q": f"{title} {author}", "limit": "3", "fields": "cover_i"},
    )
    docs = data.get("docs") if isinstance(data, dict) else None
    for doc in docs or []:
        if doc.get("cover_i"):
            logger.debug("Found cover for %r via Open Library", title)
            return COVER_URL_TEMPLATE.format(cover_id=doc["cover_i"], size="M")
    return None


# --------------------------------------------------------------------------- #
# Cache
# --------------------------------------------------------------------------- #
_CACHE_CAPACITY = 128
_enrichment_cache: OrderedDict[Tuple[str, str], BookMetadata] = OrderedDict()
_cache_lock = RLock()


def get_enriched_metadata(title: str, author: Optional[str]) -> BookMetadata:
    cache_key = ((title or "").strip().lower(), (author or "").strip().lower())

    with _cache_lock:
        cached = _enrichment_cache.get(cache_key)
        if cached:
            _enrichment_cache.move_to_end(cache_key)
            return cached

    enriched = enrich_book(title, author)

    if enriched.has_data():
        with _cache_lock:
            _enrichment_cache[cache_key] = enriched
            if len(_enrichment_cache) > _CACHE_CAPACITY:
                _enrichment_cache.popitem(last=False)

    return enriched


def clear_cache() -> None:
    with _cache_lock:
        _enrichment_cache.clear()
