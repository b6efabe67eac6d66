from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

_SEPARATORS = re.compile(r"[-\s]")


def clean_isbn(value: Optional[str]) -> str:
    return _SEPARATORS.sub("", value or "")


def isbn13_to_isbn10(isbn13: str) -> Optional[str]:
    """Convert a 978-prefixed ISBN-13. 979 ISBNs have no ISBN-10 form."""
    cleaned = clean_isbn(isbn13)
    if len(cleaned) != 13 or not cleaned.isdigit() or not cleaned.startswith("978"):
        return None

    base = cleaned[3:12]
    total = sum(int(digit) * (10 - index) for index, digit in enumerate(base))
    remainder = total % 11
    if remainder == 0:
        check = "0"
    elif remainder == 1:
        check = "X"
    else:
        check = str(11 - remainder)
    return base + check


def get_isbn10(isbn: Optional[str]) -> Optional[str]:
    cleaned = clean_isbn(isbn)
    if len(cleaned) == 10:
        return cleaned
    if len(cleaned) == 13:
        return isbn13_to_isbn10(cleaned)
    return None


def amazon_book_url(title: str, author: str, isbn: Optional[str] = None, *, tag: str) -> str:
    """Product link when an ISBN-10 (the ASIN for most books) is known, search link otherwise."""
    if isbn:
        isbn10 = get_isbn10(isbn)
        if isbn10:
            return f"https://www.amazon.com/dp/{isbn10}/?tag={tag}"

    query = quote(f"{title} {author}", safe="")
    return f"https://www.amazon.com/s?k={query}&i=stripbooks&tag={tag}"
