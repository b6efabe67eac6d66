from __future__ import annotations

import hashlib
import io
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from config import get_settings

logger = logging.getLogger(__name__)

PLACEHOLDER_COVER = "/placeholder.svg"
GOOGLE_CONTENT_HOST = "books.google.com"
GOOGLE_CONTENT_PATH = "/books/content"
AVATAR_EDGE = 256


def normalize_cover_url(raw_url: Optional[str]) -> Optional[str]:
    """Rewrite third-party cover URLs into the variant that renders most reliably.

    Google Books serves an "image not available" placeholder for some volumes
    unless ``edge=curl`` is requested, and zoom level 1 is tiny.
    """
    if not raw_url:
        return raw_url

    parts = urlsplit(raw_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return raw_url

    query = parse_qsl(parts.query, keep_blank_values=True)
    if parts.hostname == GOOGLE_CONTENT_HOST and parts.path.startswith(GOOGLE_CONTENT_PATH):
        params = dict(query)
        if "edge" not in params:
            query.append(("edge", "curl"))
        elif not params["edge"]:
            query = [(key, "curl" if key == "edge" else value) for key, value in query]
        zoom = params.get("zoom")
        if "zoom" not in params:
            query.append(("zoom", "2"))
        elif not zoom or zoom == "1":
            query = [(key, "2" if key == "zoom" else value) for key, value in query]

    return urlunsplit(("https", parts.netloc, parts.path, urlencode(query), parts.fragment))


def needs_cover_refresh(cover_url: Optional[str]) -> bool:
    if not cover_url or cover_url == PLACEHOLDER_COVER:
        return True
    return f"{GOOGLE_CONTENT_HOST}{GOOGLE_CONTENT_PATH}" in cover_url and "edge=curl" not in cover_url


def _safe_name(identifier: str) -> str:
    return hashlib.sha1(identifier.encode("utf-8")).hexdigest()


def cached_cover_path(identifier: str, max_edge: Optional[int]) -> Path:
    if max_edge:
        safe_name = _safe_name(f"{identifier}:{max_edge}")
    else:
        safe_name = _safe_name(f"{identifier}:orig")
    return get_settings().covers_dir / f"{safe_name}.jpg"


def fetch_and_cache_cover(
    cover_url: Optional[str],
    identifier: str,
    *,
    max_edge: Optional[int] = None,
) -> Optional[Path]:
    """Download a cover image (if any) and save it to the cache directory."""
    if not cover_url:
        return None

    target_path = cached_cover_path(identifier, max_edge)
    if target_path.exists():
        return target_path

    try:
        response = requests.get(cover_url, timeout=get_settings().http_timeout)
        response.raise_for_status()
    except requests.RequestException as error:
        logger.warning("Unable to download cover %s: %s", cover_url, error)
        return None

    if max_edge:
        try:
            image = Image.open(io.BytesIO(response.content))
            image.thumbnail((max_edge, max_edge), Image.LANCZOS)
            image.convert("RGB").save(target_path, format="JPEG")
            return target_path
        except (UnidentifiedImageError, OSError):
            logger.debug("Cover %s is not a decodable image, caching raw bytes", cover_url)

    try:
        target_path.write_bytes(response.content)
    except OSError as error:
        logger.warning("Unable to cache cover %s: %s", cover_url, error)
        return None
    return target_path


def save_avatar(user_id: str, data: bytes) -> str:
    """Store a square JPEG avatar for ``user_id`` and return its file name."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Avatar must be a valid image file.") from exc

    image = ImageOps.exif_transpose(image)
    image = ImageOps.fit(image.convert("RGB"), (AVATAR_EDGE, AVATAR_EDGE), Image.LANCZOS)

    filename = f"{_safe_name(user_id)}.jpg"
    image.save(get_settings().avatars_dir / filename, format="JPEG", quality=90)
    return filename
