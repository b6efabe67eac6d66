from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from config import ConfigurationError, get_settings
from enrichment import fetch_isbndb_metadata, find_cover, lookup_metadata
from media import needs_cover_refresh
from store import ShelvyStore, utc_now

logger = logging.getLogger(__name__)

MAX_NOT_FOUND_SAMPLES = 5
MAX_ERRORS = 10
MAX_ISBNDB_ERRORS = 5
COVER_REFRESH_LIMIT = 50


@dataclass
class BackfillReport:
    total: int = 0
    updated: int = 0
    no_data: int = 0
    not_found_samples: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IsbndbBackfillReport:
    processed: int = 0
    updated: int = 0
    not_found: int = 0
    propagated: int = 0
    remaining: int = 0
    errors: List[str] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _pause(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)


def _missing_fields(book: Dict[str, Any], metadata: Any) -> Dict[str, Any]:
    """Only fill what the book does not have yet."""
    update: Dict[str, Any] = {}
    if not book.get("page_count") and metadata.page_count:
        update["page_count"] = metadata.page_count
    if not book.get("isbn") and metadata.isbn:
        update["isbn"] = metadata.isbn
    if not book.get("description") and metadata.description:
        update["description"] = metadata.description
    if not book.get("categories") and metadata.categories:
        update["categories"] = metadata.categories
    return update


def backfill_user_metadata(store: ShelvyStore, user_id: str) -> BackfillReport:
    """Fill page counts, ISBNs, descriptions and categories for one user's shelf."""
    books = store.books_missing_metadata(user_id)
    report = BackfillReport(total=len(books))
    if not books:
        report.message = "All books already have metadata"
        return report

    delay = get_settings().backfill_delay
    for index, book in enumerate(books):
        if index:
            _pause(delay)
        metadata = lookup_metadata(book["title"], book["author"])
        update = _missing_fields(book, metadata) if metadata else {}
        if update:
            store.apply_metadata([book["id"]], update)
            report.updated += 1
        else:
            report.no_data += 1
            if len(report.not_found_samples) < MAX_NOT_FOUND_SAMPLES:
                report.not_found_samples.append(f"{book['title']} by {book['author']}")

    logger.info("Backfilled %d of %d books for %s", report.updated, report.total, user_id)
    return report


def backfill_all_metadata(store: ShelvyStore, batch_size: int = 20) -> BackfillReport:
    """Admin-wide pass over books that have never been looked up.

    Every processed book is stamped with ``metadata_attempted_at`` so the
    next batch moves on even when nothing was found.
    """
    books = store.books_pending_metadata(batch_size)
    report = BackfillReport(total=len(books))
    if not books:
        report.message = "All books already have metadata"
        return report

    delay = get_settings().admin_backfill_delay
    for index, book in enumerate(books):
        if index:
            _pause(delay)
        try:
            metadata = lookup_metadata(book["title"], book["author"])
            update = _missing_fields(book, metadata) if metadata else {}
            store.apply_metadata([book["id"]], {**update, "metadata_attempted_at": utc_now()})
        except Exception as exc:
            logger.exception("Error processing %r", book["title"])
            if len(report.errors) < MAX_ERRORS:
                report.errors.append(f'Error processing "{book["title"]}": {exc}')
            continue

        if update:
            report.updated += 1
        else:
            report.no_data += 1
            if len(report.not_found_samples) < MAX_NOT_FOUND_SAMPLES:
                report.not_found_samples.append(f"{book['title']} by {book['author']}")

    logger.info(
        "Metadata backfill: %d processed, %d updated, %d without data",
        report.total,
        report.updated,
        report.no_data,
    )
    return report


def isbndb_backfill(store: ShelvyStore, batch_size: int = 100) -> IsbndbBackfillReport:
    """Look up each distinct title/author pair once and copy the result to every matching book."""
    settings = get_settings()
    if not settings.isbndb_api_key:
        raise ConfigurationError("ISBNDB_API_KEY not configured")

    books = store.books_pending_isbndb(batch_size)
    report = IsbndbBackfillReport()
    if not books:
        report.message = "All books have been processed"
        return report

    unique: Dict[str, Dict[str, Any]] = {}
    for book in books:
        key = f"{book['title'].lower().strip()}|{book['author'].lower().strip()}"
        unique.setdefault(key, book)
    logger.info("ISBNdb backfill: %d books, %d unique titles", len(books), len(unique))

    for index, book in enumerate(unique.values()):
        if index:
            _pause(settings.isbndb_delay)
        report.processed += 1
        try:
            metadata = fetch_isbndb_metadata(book["title"], book["author"], page_size=1)
            update = _missing_fields(book, metadata) if metadata else {}
            if update:
                report.updated += 1
            else:
                report.not_found += 1
            update["isbndb_attempted_at"] = utc_now()

            matching = store.books_with_title_author(book["title"], book["author"]) or [book["id"]]
            store.apply_metadata(matching, update)
            report.propagated += len(matching) - 1
        except Exception as exc:  # left unstamped, retried next batch
            logger.exception("ISBNdb backfill failed for %r", book["title"])
            if len(report.errors) < MAX_ISBNDB_ERRORS:
                report.errors.append(f'Error for "{book["title"]}": {exc}')

    report.remaining = store.count_pending_isbndb()
    logger.info(
        "ISBNdb backfill: %d processed, %d updated, %d propagated, %d remaining",
        report.processed,
        report.updated,
        report.propagated,
        report.remaining,
    )
    return report


def refresh_covers(
    store: ShelvyStore,
    user_id: str,
    book_ids: Optional[Iterable[str]] = None,
    limit: int = COVER_REFRESH_LIMIT,
) -> List[Dict[str, Any]]:
    """Find better covers for the user's books whose cover is missing or known-bad."""
    wanted = set(book_ids) if book_ids else None
    candidates: List[Dict[str, Any]] = []
    seen = set()
    for book in store.list_books(user_id):
        if book["id"] in seen:
            continue
        if wanted is not None and book["id"] not in wanted:
            continue
        if not needs_cover_refresh(book.get("cover_url")):
            continue
        seen.add(book["id"])
        candidates.append(book)
        if len(candidates) >= limit:
            break

    results: List[Dict[str, Any]] = []
    for book in candidates:
        cover = find_cover(book["title"], book["author"])
        if cover:
            store.apply_metadata([book["id"]], {"cover_url": cover})
        results.append(
            {
                "id": book["id"],
                "title": book["title"],
                "cover_url": cover,
                "updated": bool(cover),
            }
        )
    logger.info(
        "Refreshed %d of %d covers for %s",
        sum(1 for result in results if result["updated"]),
        len(results),
        user_id,
    )
    return results
