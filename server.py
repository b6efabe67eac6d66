from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from backfill import backfill_all_metadata, backfill_user_metadata, isbndb_backfill, refresh_covers
from catalog import search_books as search_catalog
from config import ConfigurationError, configure_logging, get_settings
from enrichment import get_enriched_metadata
from goodreads import read_goodreads_export
from isbn import amazon_book_url
from mailer import MailerError, send_invite
from media import cached_cover_path, fetch_and_cache_cover, normalize_cover_url, save_avatar
from security import create_access_token, decode_access_token, hash_password, verify_password
from shelf import available_categories, filter_books, sort_books
from store import ShelvyStore, validate_username

logger = logging.getLogger(__name__)

COVER_MAX_EDGE = 600

# -----------------------------------------------------------------------------
# Application setup
# -----------------------------------------------------------------------------

configure_logging()

app = FastAPI(title="Shelvy API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer_scheme = HTTPBearer(auto_error=False)


def get_store() -> ShelvyStore:
    if not hasattr(get_store, "_instance"):
        get_store._instance = ShelvyStore()
    return get_store._instance  # type: ignore[attr-defined]


@app.on_event("shutdown")
def _shutdown() -> None:
    store = getattr(get_store, "_instance", None)
    if isinstance(store, ShelvyStore):
        store.close()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized
    try:
        claims = decode_access_token(credentials.credentials)
    except ValueError:
        raise unauthorized
    user = store.get_user(claims["sub"])
    if user is None:
        raise unauthorized
    return user


def require_admin(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    if not store.has_role(user["id"], "admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden - Admin access required")
    return user


# -----------------------------------------------------------------------------
# Pydantic models
# -----------------------------------------------------------------------------


class Credentials(BaseModel):
    email: str
    password: str


class SignUp(Credentials):
    username: Optional[str] = None


class ProfileCreate(BaseModel):
    username: str
    display_name: Optional[str] = None


class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    display_name: Optional[str] = None


class BookCreate(BaseModel):
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    status: str = "want-to-read"
    color: Optional[str] = None
    completed_at: Optional[str] = None
    isbn: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    enrich: bool = False


class BookUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    cover_url: Optional[str] = None
    status: Optional[str] = None
    color: Optional[str] = None
    completed_at: Optional[str] = None
    isbn: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    categories: Optional[List[str]] = None


class SearchPayload(BaseModel):
    query: Any = None


class EnrichPayload(BaseModel):
    title: str
    author: Optional[str] = None


class BatchPayload(BaseModel):
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)


class CoverRefreshPayload(BaseModel):
    book_ids: Optional[List[str]] = None
    limit: int = Field(default=50, ge=1, le=50)


class ShelfSettingsUpdate(BaseModel):
    display_name: Optional[str] = None
    is_public: Optional[bool] = None
    shelf_skin: Optional[str] = None
    show_plant: Optional[bool] = None
    show_bookends: Optional[bool] = None
    show_ambient_light: Optional[bool] = None
    show_wood_grain: Optional[bool] = None
    decor_density: Optional[str] = None
    background_theme: Optional[str] = None


class CommentPayload(BaseModel):
    content: str


class NotePayload(BaseModel):
    content: str
    color: str = "yellow"


class ClubCreate(BaseModel):
    name: str
    description: Optional[str] = None


class JoinPayload(BaseModel):
    invite_code: str


class SuggestionPayload(BaseModel):
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    isbn: Optional[str] = None


class SuggestionStatus(BaseModel):
    status: str


class ReflectionPayload(BaseModel):
    rating: int
    content: str
    is_anonymous: bool = False


class RecommendationPayload(BaseModel):
    to_user_id: str
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    message: Optional[str] = None


class SeenPayload(BaseModel):
    kinds: Optional[List[str]] = None


class InvitePayload(BaseModel):
    recipient_email: str
    shelf_url: Optional[str] = None


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------

_CONFLICT_MESSAGES = {
    "profiles.username": "Username is already taken",
    "users.email": "An account with this email already exists",
    "follows.follower_id": "You already follow this user",
    "book_club_votes.suggestion_id": "You already voted for this book",
}


@contextmanager
def translate_errors() -> Iterator[None]:
    """Turn store and service exceptions into HTTP errors."""
    try:
        yield
    except sqlite3.IntegrityError as exc:
        detail = next(
            (message for key, message in _CONFLICT_MESSAGES.items() if key in str(exc)),
            "Already exists",
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except MailerError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def _cover_asset(book_id: str) -> Optional[str]:
    target = cached_cover_path(book_id, COVER_MAX_EDGE)
    if not target.exists():
        return None
    return f"/api/covers/{target.name}"


def _shelf_seed(seed: Optional[int]) -> int:
    """Clients pass one seed per session to keep a random shelf stable."""
    return seed if seed is not None else int(time.time() * 1000)


def _normalize_book(book: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(book)
    normalized["cover_asset"] = _cover_asset(book["id"])
    return normalized


def _token_response(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "access_token": create_access_token(user["id"]),
        "token_type": "bearer",
        "user": {"id": user["id"], "email": user["email"]},
    }


def _media_file(directory: Path, filename: str, missing: str) -> FileResponse:
    if Path(filename).name != filename:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=missing)
    path = directory / filename
    if not path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=missing)
    return FileResponse(path)


# -----------------------------------------------------------------------------
# Health and auth
# -----------------------------------------------------------------------------


@app.get("/api/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/auth/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignUp, store: ShelvyStore = Depends(get_store)) -> Dict[str, Any]:
    with translate_errors():
        if payload.username:
            validate_username(payload.username)
            if store.get_profile_by_username(payload.username):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username is already taken")
        user = store.create_user(payload.email, hash_password(payload.password))
        if payload.username:
            store.create_profile(user["id"], payload.username)
    logger.info("New account %s", user["id"])
    return _token_response(user)


@app.post("/api/auth/signin")
def signin(payload: Credentials, store: ShelvyStore = Depends(get_store)) -> Dict[str, Any]:
    record = store.get_user_credentials(payload.email)
    if record is None or not verify_password(payload.password, record["password_hash"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    return _token_response(record)


@app.get("/api/auth/me")
def me(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    return {
        **user,
        "profile": store.get_profile(user["id"]),
        "is_admin": store.has_role(user["id"], "admin"),
    }


@app.delete("/api/account", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.delete_account(user["id"])
    logger.info("Deleted account %s", user["id"])


# -----------------------------------------------------------------------------
# Profiles
# -----------------------------------------------------------------------------


@app.post("/api/profile", status_code=status.HTTP_201_CREATED)
def create_profile(
    payload: ProfileCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.create_profile(user["id"], payload.username, display_name=payload.display_name)


@app.get("/api/profile")
def get_profile(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    profile = store.get_profile(user["id"])
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile


@app.patch("/api/profile")
def update_profile(
    payload: ProfileUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.update_profile(user["id"], payload.model_dump(exclude_unset=True))


@app.post("/api/profile/avatar")
def upload_avatar(
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        filename = save_avatar(user["id"], file.file.read())
        return store.update_profile(user["id"], {"avatar_url": f"/api/avatars/{filename}"})


@app.get("/api/profiles/{user_id}")
def public_profile(
    user_id: str,
    _user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    profile = store.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return {key: profile[key] for key in ("user_id", "username", "display_name", "avatar_url")}


@app.get("/api/users/find")
def find_users(
    q: str = Query(..., min_length=1),
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    return {"results": store.find_users(user["id"], q)}


# -----------------------------------------------------------------------------
# Books
# -----------------------------------------------------------------------------


@app.get("/api/books")
def list_books(
    sort: str = Query("random"),
    seed: Optional[int] = Query(None),
    book_status: Optional[List[str]] = Query(None, alias="status"),
    category: Optional[List[str]] = Query(None),
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    books = filter_books(store.list_books(user["id"]), book_status, category)
    return [_normalize_book(book) for book in sort_books(books, sort, _shelf_seed(seed))]


@app.get("/api/books/categories")
def book_categories(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[str]:
    return available_categories(store.list_books(user["id"]))


@app.post("/api/books", status_code=status.HTTP_201_CREATED)
def create_book(
    payload: BookCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    record = payload.model_dump(exclude={"enrich"})
    record["cover_url"] = normalize_cover_url(record.get("cover_url"))

    if payload.enrich:
        with translate_errors():
            enriched = get_enriched_metadata(payload.title, payload.author)
        for key, value in enriched.to_dict().items():
            if key != "source" and not record.get(key):
                record[key] = value

    with translate_errors():
        saved = store.add_book(user["id"], record)
    return _normalize_book(saved)


@app.post("/api/books/import")
def import_goodreads(
    file: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    if file.filename and not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please upload a .csv file.")

    with translate_errors():
        parsed = read_goodreads_export(file.file.read())
        imported: List[Dict[str, Any]] = []
        skipped = 0
        for book in parsed:
            if store.has_book(user["id"], book["title"], book["author"]):
                skipped += 1
                continue
            imported.append(store.add_book(user["id"], book))
    logger.info("Imported %d books (%d skipped) for %s", len(imported), skipped, user["id"])
    return {"imported": len(imported), "skipped": skipped, "books": imported}


@app.post("/api/books/backfill")
def backfill_my_books(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    return backfill_user_metadata(store, user["id"]).to_dict()


@app.post("/api/books/refresh-covers")
def refresh_my_covers(
    payload: CoverRefreshPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    results = refresh_covers(store, user["id"], payload.book_ids, limit=payload.limit)
    return {"results": results, "updated": sum(1 for result in results if result["updated"])}


@app.get("/api/books/{book_id}")
def get_book(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return _normalize_book(store.get_book(user["id"], book_id))


@app.patch("/api/books/{book_id}")
def update_book(
    book_id: str,
    payload: BookUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    if "cover_url" in changes:
        changes["cover_url"] = normalize_cover_url(changes["cover_url"])
    with translate_errors():
        return _normalize_book(store.update_book(user["id"], book_id, changes))


@app.delete("/api/books/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_book(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.delete_book(user["id"], book_id)


@app.get("/api/books/{book_id}/amazon")
def amazon_link(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, str]:
    with translate_errors():
        book = store.get_book(user["id"], book_id)
    url = amazon_book_url(
        book["title"],
        book["author"],
        book.get("isbn"),
        tag=get_settings().amazon_associate_tag,
    )
    return {"url": url}


@app.get("/api/books/{book_id}/cover")
def book_cover(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> FileResponse:
    with translate_errors():
        book = store.get_book(user["id"], book_id)
    path = fetch_and_cache_cover(book.get("cover_url"), book["id"], max_edge=COVER_MAX_EDGE)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cover not found")
    return FileResponse(path)


# -----------------------------------------------------------------------------
# Search and metadata
# -----------------------------------------------------------------------------


@app.post("/api/search")
def search(
    payload: SearchPayload,
    _user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    return search_catalog(payload.query)


@app.post("/api/enrich")
def enrich(
    payload: EnrichPayload,
    _user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with translate_errors():
        metadata = get_enriched_metadata(payload.title, payload.author)
    return {"success": metadata.has_data(), "data": metadata.to_dict()}


# -----------------------------------------------------------------------------
# Admin maintenance
# -----------------------------------------------------------------------------


@app.post("/api/admin/backfill")
def admin_backfill(
    payload: BatchPayload,
    _admin: Dict[str, Any] = Depends(require_admin),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    return backfill_all_metadata(store, payload.batch_size or 20).to_dict()


@app.post("/api/admin/isbndb-backfill")
def admin_isbndb_backfill(
    payload: BatchPayload,
    _admin: Dict[str, Any] = Depends(require_admin),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return isbndb_backfill(store, payload.batch_size or 100).to_dict()


# -----------------------------------------------------------------------------
# Shelf settings and public shelves
# -----------------------------------------------------------------------------


@app.get("/api/shelf-settings")
def get_shelf_settings(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.get_shelf_settings(user["id"])


@app.patch("/api/shelf-settings")
def update_shelf_settings(
    payload: ShelfSettingsUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.update_shelf_settings(user["id"], payload.model_dump(exclude_unset=True))


@app.get("/api/public/shelves/{share_id}")
def public_shelf(
    share_id: str,
    sort: str = Query("random"),
    seed: Optional[int] = Query(None),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        shelf = store.get_public_shelf(share_id)
    shelf["books"] = sort_books(shelf["books"], sort, _shelf_seed(seed))
    shelf["categories"] = available_categories(shelf["books"])
    return shelf


# -----------------------------------------------------------------------------
# Follows
# -----------------------------------------------------------------------------


@app.post("/api/follows/{user_id}", status_code=status.HTTP_201_CREATED)
def follow(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.follow(user["id"], user_id)


@app.delete("/api/follows/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def unfollow(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    store.unfollow(user["id"], user_id)


@app.get("/api/follows/followers")
def followers(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return store.list_followers(user["id"])


@app.get("/api/follows/following")
def following(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return store.list_following(user["id"])


@app.get("/api/follows/{user_id}/status")
def follow_status(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, bool]:
    return {
        "following": store.is_following(user["id"], user_id),
        "followed_by": store.is_following(user_id, user["id"]),
    }


@app.get("/api/feed")
def following_feed(
    limit: int = Query(20, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return store.following_feed(user["id"], limit=limit)


# -----------------------------------------------------------------------------
# Likes, comments and notes
# -----------------------------------------------------------------------------


@app.get("/api/books/{book_id}/likes")
def book_likes(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.book_likes(user["id"], book_id)


@app.post("/api/books/{book_id}/likes")
def like_book(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        store.like_book(user["id"], book_id)
        return store.book_likes(user["id"], book_id)


@app.delete("/api/books/{book_id}/likes")
def unlike_book(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        store.unlike_book(user["id"], book_id)
        return store.book_likes(user["id"], book_id)


@app.get("/api/books/{book_id}/comments")
def list_comments(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    with translate_errors():
        return store.list_comments(user["id"], book_id)


@app.post("/api/books/{book_id}/comments", status_code=status.HTTP_201_CREATED)
def add_comment(
    book_id: str,
    payload: CommentPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.add_comment(user["id"], book_id, payload.content)


@app.delete("/api/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_comment(
    comment_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.delete_comment(user["id"], comment_id)


@app.get("/api/books/{book_id}/note")
def get_note(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Optional[Dict[str, Any]]:
    with translate_errors():
        return store.get_note(user["id"], book_id)


@app.put("/api/books/{book_id}/note")
def save_note(
    book_id: str,
    payload: NotePayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.upsert_note(user["id"], book_id, payload.content, payload.color)


@app.delete("/api/books/{book_id}/note", status_code=status.HTTP_204_NO_CONTENT)
def delete_note(
    book_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.delete_note(user["id"], book_id)


# -----------------------------------------------------------------------------
# Book clubs
# -----------------------------------------------------------------------------


@app.post("/api/clubs", status_code=status.HTTP_201_CREATED)
def create_club(
    payload: ClubCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.create_club(user["id"], payload.name, payload.description)


@app.get("/api/clubs")
def my_clubs(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return store.list_clubs(user["id"])


@app.get("/api/clubs/invite/{invite_code}")
def club_invite(invite_code: str, store: ShelvyStore = Depends(get_store)) -> Dict[str, Any]:
    with translate_errors():
        return store.club_by_invite(invite_code)


@app.post("/api/clubs/join")
def join_club(
    payload: JoinPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.join_club(user["id"], payload.invite_code)


@app.get("/api/clubs/{club_id}")
def get_club(
    club_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.get_club(user["id"], club_id)


@app.delete("/api/clubs/{club_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_club(
    club_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.delete_club(user["id"], club_id)


@app.post("/api/clubs/{club_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
def leave_club(
    club_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.leave_club(user["id"], club_id)


@app.post("/api/clubs/{club_id}/suggestions", status_code=status.HTTP_201_CREATED)
def suggest_book(
    club_id: str,
    payload: SuggestionPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    record = payload.model_dump()
    record["cover_url"] = normalize_cover_url(record.get("cover_url"))
    with translate_errors():
        return store.suggest_book(user["id"], club_id, record)


@app.patch("/api/suggestions/{suggestion_id}")
def set_suggestion_status(
    suggestion_id: str,
    payload: SuggestionStatus,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.set_suggestion_status(user["id"], suggestion_id, payload.status)


@app.delete("/api/suggestions/{suggestion_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_suggestion(
    suggestion_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.remove_suggestion(user["id"], suggestion_id)


@app.post("/api/suggestions/{suggestion_id}/vote", status_code=status.HTTP_204_NO_CONTENT)
def vote(
    suggestion_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.vote(user["id"], suggestion_id)


@app.delete("/api/suggestions/{suggestion_id}/vote", status_code=status.HTTP_204_NO_CONTENT)
def unvote(
    suggestion_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    store.unvote(user["id"], suggestion_id)


@app.get("/api/suggestions/{suggestion_id}/reflections")
def list_reflections(
    suggestion_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    with translate_errors():
        return store.list_reflections(user["id"], suggestion_id)


@app.put("/api/suggestions/{suggestion_id}/reflections")
def save_reflection(
    suggestion_id: str,
    payload: ReflectionPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.upsert_reflection(
            user["id"],
            suggestion_id,
            rating=payload.rating,
            content=payload.content,
            is_anonymous=payload.is_anonymous,
        )


@app.delete("/api/reflections/{reflection_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_reflection(
    reflection_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> None:
    with translate_errors():
        store.delete_reflection(user["id"], reflection_id)


# -----------------------------------------------------------------------------
# Recommendations and notifications
# -----------------------------------------------------------------------------


@app.post("/api/recommendations", status_code=status.HTTP_201_CREATED)
def recommend(
    payload: RecommendationPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    book = payload.model_dump(exclude={"to_user_id", "message"})
    with translate_errors():
        return store.recommend_book(user["id"], payload.to_user_id, book, payload.message)


@app.get("/api/recommendations")
def incoming_recommendations(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return store.pending_recommendations(user["id"])


@app.post("/api/recommendations/{recommendation_id}/accept")
def accept_recommendation(
    recommendation_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.respond_to_recommendation(user["id"], recommendation_id, accept=True)


@app.post("/api/recommendations/{recommendation_id}/decline")
def decline_recommendation(
    recommendation_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.respond_to_recommendation(user["id"], recommendation_id, accept=False)


@app.get("/api/notifications")
def notifications(
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.notification_summary(user["id"])


@app.post("/api/notifications/seen")
def mark_seen(
    payload: SeenPayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    with translate_errors():
        return store.mark_notifications_seen(user["id"], payload.kinds)


# -----------------------------------------------------------------------------
# Invites and media
# -----------------------------------------------------------------------------


@app.post("/api/invites")
def invite(
    payload: InvitePayload,
    user: Dict[str, Any] = Depends(get_current_user),
    store: ShelvyStore = Depends(get_store),
) -> Dict[str, Any]:
    profile = store.get_profile(user["id"]) or {}
    settings = store.get_shelf_settings(user["id"])
    sender_name = settings.get("display_name") or profile.get("display_name") or profile.get("username") or user["email"]
    existing = store.get_user_credentials(payload.recipient_email) is not None
    with translate_errors():
        return send_invite(
            payload.recipient_email,
            sender_name,
            shelf_url=payload.shelf_url,
            existing_user=existing,
        )


@app.get("/api/covers/{filename}")
def cover_image(filename: str) -> FileResponse:
    return _media_file(get_settings().covers_dir, filename, "Cover not found")


@app.get("/api/avatars/{filename}")
def avatar_image(filename: str) -> FileResponse:
    return _media_file(get_settings().avatars_dir, filename, "Avatar not found")
