from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas

logger = logging.getLogger(__name__)

# Goodreads wraps ISBNs as ="0441013597" so spreadsheets keep leading zeros.
_EXCEL_QUOTING = re.compile(r'^=?"?([^"]*)"?$')

Source = Union[str, Path, bytes, io.IOBase]


def map_goodreads_status(shelf: Optional[str]) -> str:
    if not shelf:
        return "want-to-read"
    lower = shelf.lower()
    if lower == "currently-reading" or "currently" in lower:
        return "reading"
    if lower == "read":
        return "read"
    return "want-to-read"


def _cell(row: Dict[str, Any], column: str) -> str:
    value = row.get(column)
    if value is None or (isinstance(value, float) and pandas.isna(value)):
        return ""
    return str(value).strip()


def _isbn(row: Dict[str, Any]) -> Optional[str]:
    for column in ("ISBN13", "ISBN"):
        match = _EXCEL_QUOTING.match(_cell(row, column))
        value = match.group(1).strip() if match else ""
        if value:
            return value
    return None


def _page_count(row: Dict[str, Any]) -> Optional[int]:
    raw = _cell(row, "Number of Pages")
    try:
        pages = int(float(raw)) if raw else 0
    except ValueError:
        return None
    return pages or None


def read_goodreads_export(source: Source) -> List[Dict[str, Any]]:
    """Parse a Goodreads "Export Library" CSV into shelf-ready book payloads."""
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        frame = pandas.read_csv(source, dtype=str, keep_default_na=False)
    except (pandas.errors.ParserError, pandas.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ValueError("Could not read the CSV file. Is it a Goodreads export?") from exc

    if "Title" not in frame.columns:
        raise ValueError("The CSV file has no Title column. Is it a Goodreads export?")

    books: List[Dict[str, Any]] = []
    for row in frame.to_dict(orient="records"):
        title = _cell(row, "Title")
        if not title:
            continue
        books.append(
            {
                "title": title,
                "author": _cell(row, "Author") or _cell(row, "Author l-f") or "Unknown Author",
                "status": map_goodreads_status(
                    _cell(row, "Exclusive Shelf") or _cell(row, "Bookshelves")
                ),
                "isbn": _isbn(row),
                "page_count": _page_count(row),
            }
        )
    logger.info("Parsed %d books from Goodreads export", len(books))
    return books
