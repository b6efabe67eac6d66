from __future__ import annotations

import json
import re
import secrets
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from config import get_settings
from shelf import BOOK_STATUSES

DEFAULT_SPINE_COLOR = "#8B4513"

SHELF_SKINS = ("oak", "walnut", "white", "dark")
DECOR_DENSITIES = ("minimal", "balanced", "cozy")
BACKGROUND_THEMES = ("office", "library", "cozy", "forest", "ocean", "sunset", "lavender", "space")
NOTE_COLORS = ("yellow", "pink", "blue", "green")
SUGGESTION_STATUSES = ("suggested", "reading", "read")
RECOMMENDATION_STATUSES = ("pending", "accepted", "declined")
NOTIFICATION_KINDS = ("likes", "followers", "recommendations")

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,30}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_NOTE = 200
MAX_COMMENT = 500
MAX_REFLECTION = 280
MAX_CLUB_NAME = 50
MAX_CLUB_DESCRIPTION = 200
MAX_RECOMMENDATION_MESSAGE = 300

_BOOK_FIELDS = (
    "title",
    "author",
    "cover_url",
    "status",
    "color",
    "completed_at",
    "isbn",
    "page_count",
    "description",
    "categories",
)
_METADATA_FIELDS = (
    "cover_url",
    "isbn",
    "page_count",
    "description",
    "categories",
    "metadata_attempted_at",
    "isbndb_attempted_at",
)
_SHELF_SETTING_FIELDS = (
    "display_name",
    "is_public",
    "shelf_skin",
    "show_plant",
    "show_bookends",
    "show_ambient_light",
    "show_wood_grain",
    "decor_density",
    "background_theme",
)
_BOOLEAN_SETTINGS = ("is_public", "show_plant", "show_bookends", "show_ambient_light", "show_wood_grain")

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        user_id TEXT NOT NULL,
        role TEXT NOT NULL,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(user_id, role)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS profiles (
        user_id TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        display_name TEXT,
        avatar_url TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS books (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        cover_url TEXT,
        status TEXT NOT NULL DEFAULT 'want-to-read'
            CHECK (status IN ('reading', 'want-to-read', 'read')),
        color TEXT NOT NULL DEFAULT '#8B4513',
        completed_at TEXT,
        isbn TEXT,
        page_count INTEGER,
        description TEXT,
        categories TEXT,
        metadata_attempted_at TEXT,
        isbndb_attempted_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS shelf_settings (
        user_id TEXT PRIMARY KEY,
        display_name TEXT,
        is_public INTEGER NOT NULL DEFAULT 0,
        share_id TEXT NOT NULL UNIQUE,
        shelf_skin TEXT NOT NULL DEFAULT 'oak',
        show_plant INTEGER NOT NULL DEFAULT 1,
        show_bookends INTEGER NOT NULL DEFAULT 1,
        show_ambient_light INTEGER NOT NULL DEFAULT 1,
        show_wood_grain INTEGER NOT NULL DEFAULT 1,
        decor_density TEXT NOT NULL DEFAULT 'balanced',
        background_theme TEXT NOT NULL DEFAULT 'office',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS follows (
        id TEXT PRIMARY KEY,
        follower_id TEXT NOT NULL,
        following_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(follower_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY(following_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(follower_id, following_id),
        CHECK (follower_id != following_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_clubs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        invite_code TEXT NOT NULL UNIQUE,
        owner_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(owner_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_club_members (
        id TEXT PRIMARY KEY,
        club_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('owner', 'member')),
        joined_at TEXT NOT NULL,
        FOREIGN KEY(club_id) REFERENCES book_clubs(id) ON DELETE CASCADE,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(club_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_club_suggestions (
        id TEXT PRIMARY KEY,
        club_id TEXT NOT NULL,
        suggested_by TEXT NOT NULL,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        cover_url TEXT,
        isbn TEXT,
        status TEXT NOT NULL DEFAULT 'suggested'
            CHECK (status IN ('suggested', 'reading', 'read')),
        finished_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY(club_id) REFERENCES book_clubs(id) ON DELETE CASCADE,
        FOREIGN KEY(suggested_by) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_club_votes (
        id TEXT PRIMARY KEY,
        suggestion_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(suggestion_id) REFERENCES book_club_suggestions(id) ON DELETE CASCADE,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(suggestion_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_club_reflections (
        id TEXT PRIMARY KEY,
        suggestion_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
        content TEXT NOT NULL,
        is_anonymous INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(suggestion_id) REFERENCES book_club_suggestions(id) ON DELETE CASCADE,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(suggestion_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_notes (
        id TEXT PRIMARY KEY,
        book_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        color TEXT NOT NULL DEFAULT 'yellow',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(book_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_likes (
        id TEXT PRIMARY KEY,
        book_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
        UNIQUE(book_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_comments (
        id TEXT PRIMARY KEY,
        book_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS book_recommendations (
        id TEXT PRIMARY KEY,
        from_user_id TEXT NOT NULL,
        to_user_id TEXT NOT NULL,
        book_title TEXT NOT NULL,
        book_author TEXT NOT NULL,
        book_cover_url TEXT,
        book_isbn TEXT,
        message TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'accepted', 'declined')),
        created_at TEXT NOT NULL,
        responded_at TEXT,
        FOREIGN KEY(from_user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY(to_user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS notification_settings (
        user_id TEXT PRIMARY KEY,
        last_seen_likes_at TEXT NOT NULL,
        last_seen_followers_at TEXT NOT NULL,
        last_seen_recommendations_at TEXT NOT NULL,
        FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_books_user ON books(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_books_title_author ON books(title COLLATE NOCASE, author COLLATE NOCASE);",
    "CREATE INDEX IF NOT EXISTS idx_follows_following ON follows(following_id);",
    "CREATE INDEX IF NOT EXISTS idx_suggestions_club ON book_club_suggestions(club_id);",
]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _new_id() -> str:
    return uuid.uuid4().hex


def _trimmed(value: Optional[str], *, label: str, maximum: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValueError(f"{label} cannot be empty")
    if len(text) > maximum:
        raise ValueError(f"{label} must be {maximum} characters or less")
    return text


def _choice(value: Any, allowed: Iterable[str], *, label: str) -> str:
    allowed = tuple(allowed)
    if value not in allowed:
        raise ValueError(f"{label} must be one of: {', '.join(allowed)}")
    return value


def validate_username(username: Optional[str]) -> str:
    name = (username or "").strip()
    if not USERNAME_PATTERN.match(name):
        raise ValueError(
            "Username must be 3-30 characters of letters, numbers, underscores or hyphens"
        )
    return name


def _book_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    book = dict(row)
    raw = book.get("categories")
    book["categories"] = json.loads(raw) if raw else None
    return book


def _settings_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    settings = dict(row)
    for key in _BOOLEAN_SETTINGS:
        settings[key] = bool(settings[key])
    return settings


def _encode_categories(categories: Any) -> Optional[str]:
    if not categories:
        return None
    if isinstance(categories, str):
        categories = [categories]
    return json.dumps([str(item) for item in categories])


class ShelvyStore:
    """SQLite-backed store for users, shelves and the social features around them."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or get_settings().db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute("PRAGMA foreign_keys = ON;")
        self._ensure_schema()

    # --------------------------------------------------------------------- #
    # Schema
    # --------------------------------------------------------------------- #
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)
            self._ensure_column("books", "metadata_attempted_at", "TEXT")
            self._ensure_column("books", "isbndb_attempted_at", "TEXT")

    def _ensure_column(self, table: str, column: str, definition: str) -> None:
        """Add a column that older databases were created without."""
        columns = {row["name"] for row in self._conn.execute(f"PRAGMA table_info('{table}');")}
        if column not in columns:
            self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition};")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --------------------------------------------------------------------- #
    # Internal helpers (callers hold the lock)
    # --------------------------------------------------------------------- #
    def _one(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        return self._conn.execute(sql, tuple(params)).fetchone()

    def _all(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        return self._conn.execute(sql, tuple(params)).fetchall()

    def _require_book(self, book_id: str) -> sqlite3.Row:
        row = self._one("SELECT * FROM books WHERE id = ?", (book_id,))
        if row is None:
            raise LookupError("Book not found")
        return row

    def _require_owned_book(self, user_id: str, book_id: str) -> sqlite3.Row:
        row = self._require_book(book_id)
        if row["user_id"] != user_id:
            raise PermissionError("You can only change books on your own shelf")
        return row

    def _ensure_shelf_settings(self, user_id: str) -> sqlite3.Row:
        row = self._one("SELECT * FROM shelf_settings WHERE user_id = ?", (user_id,))
        if row is not None:
            return row
        now = utc_now()
        self._conn.execute(
            """
            INSERT INTO shelf_settings (user_id, share_id, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, secrets.token_hex(6), now, now),
        )
        return self._one("SELECT * FROM shelf_settings WHERE user_id = ?", (user_id,))

    def _ensure_notification_settings(self, user_id: str) -> sqlite3.Row:
        row = self._one("SELECT * FROM notification_settings WHERE user_id = ?", (user_id,))
        if row is not None:
            return row
        now = utc_now()
        self._conn.execute(
            """
            INSERT INTO notification_settings
                (user_id, last_seen_likes_at, last_seen_followers_at, last_seen_recommendations_at)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, now, now, now),
        )
        return self._one("SELECT * FROM notification_settings WHERE user_id = ?", (user_id,))

    def _can_view_shelf(self, viewer_id: Optional[str], owner_id: str) -> bool:
        if viewer_id == owner_id:
            return True
        public = self._one(
            "SELECT 1 FROM shelf_settings WHERE user_id = ? AND is_public = 1", (owner_id,)
        )
        if public or viewer_id is None:
            return public is not None
        follows = self._one(
            "SELECT 1 FROM follows WHERE follower_id = ? AND following_id = ?",
            (viewer_id, owner_id),
        )
        if follows:
            return True
        club_mates = self._one(
            """
            SELECT 1
            FROM book_club_members mine
            JOIN book_club_members theirs ON theirs.club_id = mine.club_id
            WHERE mine.user_id = ? AND theirs.user_id = ?
            LIMIT 1
            """,
            (viewer_id, owner_id),
        )
        return club_mates is not None

    def _require_visible_book(self, viewer_id: str, book_id: str) -> sqlite3.Row:
        book = self._require_book(book_id)
        if not self._can_view_shelf(viewer_id, book["user_id"]):
            raise PermissionError("This shelf is private")
        return book

    def _club_role(self, club_id: str, user_id: str) -> Optional[str]:
        row = self._one(
            "SELECT role FROM book_club_members WHERE club_id = ? AND user_id = ?",
            (club_id, user_id),
        )
        return row["role"] if row else None

    def _require_club(self, club_id: str) -> sqlite3.Row:
        row = self._one("SELECT * FROM book_clubs WHERE id = ?", (club_id,))
        if row is None:
            raise LookupError("Club not found")
        return row

    def _require_member(self, club_id: str, user_id: str) -> str:
        self._require_club(club_id)
        role = self._club_role(club_id, user_id)
        if role is None:
            raise PermissionError("Only club members can do that")
        return role

    def _require_suggestion(self, suggestion_id: str) -> sqlite3.Row:
        row = self._one("SELECT * FROM book_club_suggestions WHERE id = ?", (suggestion_id,))
        if row is None:
            raise LookupError("Suggestion not found")
        return row

    def _insert_book(self, user_id: str, payload: Dict[str, Any]) -> str:
        title = (payload.get("title") or "").strip()
        if not title:
            raise ValueError("Title is required")
        author = (payload.get("author") or "").strip() or "Unknown Author"
        status = _choice(payload.get("status") or "want-to-read", BOOK_STATUSES, label="Status")
        page_count = payload.get("page_count")
        book_id = _new_id()
        now = utc_now()
        self._conn.execute(
            """
            INSERT INTO books (
                id, user_id, title, author, cover_url, status, color, completed_at,
                isbn, page_count, description, categories, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                book_id,
                user_id,
                title,
                author,
                payload.get("cover_url"),
                status,
                payload.get("color") or DEFAULT_SPINE_COLOR,
                payload.get("completed_at"),
                payload.get("isbn"),
                int(page_count) if page_count else None,
                payload.get("description"),
                _encode_categories(payload.get("categories")),
                payload.get("created_at") or now,
                now,
            ),
        )
        return book_id

    # --------------------------------------------------------------------- #
    # Users and roles
    # --------------------------------------------------------------------- #
    def create_user(self, email: str, password_hash: str) -> Dict[str, Any]:
        address = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(address):
            raise ValueError("Please enter a valid email address")
        user_id = _new_id()
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
                (user_id, address, password_hash, utc_now()),
            )
            row = self._one("SELECT id, email, created_at FROM users WHERE id = ?", (user_id,))
        return dict(row)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._one("SELECT id, email, created_at FROM users WHERE id = ?", (user_id,))
        return dict(row) if row else None

    def get_user_credentials(self, email: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._one("SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),))
        return dict(row) if row else None

    def grant_role(self, user_id: str, role: str = "admin") -> None:
        with self._lock, self._conn:
            if self._one("SELECT 1 FROM users WHERE id = ?", (user_id,)) is None:
                raise LookupError("User not found")
            self._conn.execute(
                "INSERT OR IGNORE INTO user_roles (user_id, role) VALUES (?, ?)",
                (user_id, role),
            )

    def has_role(self, user_id: str, role: str = "admin") -> bool:
        with self._lock:
            row = self._one(
                "SELECT 1 FROM user_roles WHERE user_id = ? AND role = ?", (user_id, role)
            )
        return row is not None

    def delete_account(self, user_id: str) -> None:
        """Remove the user and every row that belongs to them."""
        with self._lock, self._conn:
            if self._one("SELECT 1 FROM users WHERE id = ?", (user_id,)) is None:
                raise LookupError("User not found")

            owned_books = "SELECT id FROM books WHERE user_id = ?"
            self._conn.execute(f"DELETE FROM book_likes WHERE user_id = ? OR book_id IN ({owned_books})", (user_id, user_id))
            self._conn.execute(f"DELETE FROM book_comments WHERE user_id = ? OR book_id IN ({owned_books})", (user_id, user_id))
            self._conn.execute(f"DELETE FROM book_notes WHERE user_id = ? OR book_id IN ({owned_books})", (user_id, user_id))
            self._conn.execute("DELETE FROM books WHERE user_id = ?", (user_id,))
            self._conn.execute(
                "DELETE FROM follows WHERE follower_id = ? OR following_id = ?", (user_id, user_id)
            )

            owned_clubs = "SELECT id FROM book_clubs WHERE owner_id = ?"
            owned_suggestions = f"SELECT id FROM book_club_suggestions WHERE club_id IN ({owned_clubs})"
            self._conn.execute(f"DELETE FROM book_club_votes WHERE suggestion_id IN ({owned_suggestions})", (user_id,))
            self._conn.execute(f"DELETE FROM book_club_reflections WHERE suggestion_id IN ({owned_suggestions})", (user_id,))
            self._conn.execute(f"DELETE FROM book_club_suggestions WHERE club_id IN ({owned_clubs})", (user_id,))
            self._conn.execute(f"DELETE FROM book_club_members WHERE club_id IN ({owned_clubs})", (user_id,))
            self._conn.execute("DELETE FROM book_clubs WHERE owner_id = ?", (user_id,))

            self._conn.execute("DELETE FROM book_club_members WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM book_club_votes WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM book_club_reflections WHERE user_id = ?", (user_id,))
            suggested = "SELECT id FROM book_club_suggestions WHERE suggested_by = ?"
            self._conn.execute(f"DELETE FROM book_club_votes WHERE suggestion_id IN ({suggested})", (user_id,))
            self._conn.execute(f"DELETE FROM book_club_reflections WHERE suggestion_id IN ({suggested})", (user_id,))
            self._conn.execute("DELETE FROM book_club_suggestions WHERE suggested_by = ?", (user_id,))

            self._conn.execute(
                "DELETE FROM book_recommendations WHERE from_user_id = ? OR to_user_id = ?",
                (user_id, user_id),
            )
            self._conn.execute("DELETE FROM notification_settings WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM shelf_settings WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM profiles WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM user_roles WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

    # --------------------------------------------------------------------- #
    # Profiles
    # --------------------------------------------------------------------- #
    def create_profile(
        self,
        user_id: str,
        username: str,
        *,
        display_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        name = validate_username(username)
        now = utc_now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO profiles (user_id, username, display_name, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, name, (display_name or "").strip() or None, now, now),
            )
            self._ensure_shelf_settings(user_id)
            row = self._one("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        return dict(row)

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._one("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        return dict(row) if row else None

    def get_profile_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._one("SELECT * FROM profiles WHERE username = ?", ((username or "").strip(),))
        return dict(row) if row else None

    def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        assignments: List[str] = []
        values: List[Any] = []
        if changes.get("username") is not None:
            assignments.append("username = ?")
            values.append(validate_username(changes["username"]))
        if "display_name" in changes:
            assignments.append("display_name = ?")
            values.append((changes["display_name"] or "").strip() or None)
        if "avatar_url" in changes:
            assignments.append("avatar_url = ?")
            values.append(changes["avatar_url"])

        with self._lock, self._conn:
            if self._one("SELECT 1 FROM profiles WHERE user_id = ?", (user_id,)) is None:
                raise LookupError("Profile not found")
            if assignments:
                assignments.append("updated_at = ?")
                values.extend([utc_now(), user_id])
                self._conn.execute(
                    f"UPDATE profiles SET {', '.join(assignments)} WHERE user_id = ?",
                    values,
                )
            row = self._one("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        return dict(row)

    def find_users(self, viewer_id: str, term: str, *, limit: int = 10) -> List[Dict[str, Any]]:
        """Username or e-mail search among users whose shelves are public."""
        search = (term or "").strip().lower()
        if len(search) < 2:
            return []
        like = f"%{search}%"
        with self._lock:
            rows = self._all(
                """
                SELECT p.user_id, p.username, p.avatar_url, s.share_id,
                       CASE WHEN lower(p.username) LIKE ? THEN 'username' ELSE 'email' END AS matched_by
                FROM profiles p
                JOIN users u ON u.id = p.user_id
                JOIN shelf_settings s ON s.user_id = p.user_id AND s.is_public = 1
                WHERE p.user_id != ?
                  AND (lower(p.username) LIKE ? OR (? LIKE '%@%' AND lower(u.email) LIKE ?))
                ORDER BY matched_by DESC, lower(p.username)
                LIMIT ?
                """,
                (like, viewer_id, like, search, like, limit),
            )
        return [dict(row) for row in rows]

    # --------------------------------------------------------------------- #
    # Books
    # --------------------------------------------------------------------- #
    def add_book(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock, self._conn:
            book_id = self._insert_book(user_id, payload)
            row = self._require_book(book_id)
        return _book_from_row(row)

    def list_books(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                "SELECT * FROM books WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
            )
        return [_book_from_row(row) for row in rows]

    def get_book(self, viewer_id: str, book_id: str) -> Dict[str, Any]:
        with self._lock:
            row = self._require_visible_book(viewer_id, book_id)
        return _book_from_row(row)

    def has_book(self, user_id: str, title: str, author: str) -> bool:
        with self._lock:
            row = self._one(
                """
                SELECT 1 FROM books
                WHERE user_id = ? AND lower(title) = lower(?) AND lower(author) = lower(?)
                """,
                (user_id, title.strip(), author.strip()),
            )
        return row is not None

    def update_book(self, user_id: str, book_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        assignments: List[str] = []
        values: List[Any] = []
        for key in _BOOK_FIELDS:
            if key not in changes:
                continue
            value = changes[key]
            if key == "status":
                value = _choice(value, BOOK_STATUSES, label="Status")
            elif key == "title":
                value = (value or "").strip()
                if not value:
                    raise ValueError("Title is required")
            elif key == "categories":
                value = _encode_categories(value)
            assignments.append(f"{key} = ?")
            values.append(value)

        with self._lock, self._conn:
            self._require_owned_book(user_id, book_id)
            if assignments:
                assignments.append("updated_at = ?")
                values.extend([utc_now(), book_id])
                self._conn.execute(
                    f"UPDATE books SET {', '.join(assignments)} WHERE id = ?", values
                )
            row = self._require_book(book_id)
        return _book_from_row(row)

    def delete_book(self, user_id: str, book_id: str) -> None:
        with self._lock, self._conn:
            self._require_owned_book(user_id, book_id)
            self._conn.execute("DELETE FROM books WHERE id = ?", (book_id,))

    # --------------------------------------------------------------------- #
    # Metadata maintenance
    # --------------------------------------------------------------------- #
    def books_missing_metadata(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                """
                SELECT * FROM books
                WHERE user_id = ?
                  AND (page_count IS NULL OR isbn IS NULL OR description IS NULL OR categories IS NULL)
                ORDER BY created_at
                """,
                (user_id,),
            )
        return [_book_from_row(row) for row in rows]

    def books_pending_metadata(self, limit: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                """
                SELECT * FROM books
                WHERE metadata_attempted_at IS NULL
                  AND (description IS NULL OR page_count IS NULL OR categories IS NULL)
                ORDER BY created_at
                LIMIT ?
                """,
                (limit,),
            )
        return [_book_from_row(row) for row in rows]

    _PENDING_ISBNDB = """
        FROM books
        WHERE isbndb_attempted_at IS NULL
          AND (page_count IS NULL OR isbn IS NULL OR description IS NULL OR categories IS NULL)
    """

    def books_pending_isbndb(self, limit: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                f"SELECT * {self._PENDING_ISBNDB} ORDER BY created_at LIMIT ?", (limit,)
            )
        return [_book_from_row(row) for row in rows]

    def count_pending_isbndb(self) -> int:
        with self._lock:
            return int(self._one(f"SELECT COUNT(*) {self._PENDING_ISBNDB}")[0])

    def books_with_title_author(self, title: str, author: str) -> List[str]:
        with self._lock:
            rows = self._all(
                "SELECT id FROM books WHERE lower(title) = lower(?) AND lower(author) = lower(?)",
                (title, author),
            )
        return [row["id"] for row in rows]

    def apply_metadata(self, book_ids: Iterable[str], fields: Dict[str, Any]) -> int:
        """Write maintenance fields onto books regardless of owner. Returns rows touched."""
        assignments: List[str] = []
        values: List[Any] = []
        for key in _METADATA_FIELDS:
            if key in fields:
                assignments.append(f"{key} = ?")
                values.append(_encode_categories(fields[key]) if key == "categories" else fields[key])
        ids = list(book_ids)
        if not assignments or not ids:
            return 0
        assignments.append("updated_at = ?")
        values.append(utc_now())
        placeholders = ", ".join("?" for _ in ids)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"UPDATE books SET {', '.join(assignments)} WHERE id IN ({placeholders})",
                (*values, *ids),
            )
        return cursor.rowcount

    # --------------------------------------------------------------------- #
    # Shelf settings and public shelves
    # --------------------------------------------------------------------- #
    def get_shelf_settings(self, user_id: str) -> Dict[str, Any]:
        with self._lock, self._conn:
            row = self._ensure_shelf_settings(user_id)
        return _settings_from_row(row)

    def update_shelf_settings(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        assignments: List[str] = []
        values: List[Any] = []
        for key in _SHELF_SETTING_FIELDS:
            if key not in changes or (changes[key] is None and key != "display_name"):
                continue
            value = changes[key]
            if key == "shelf_skin":
                value = _choice(value, SHELF_SKINS, label="Shelf skin")
            elif key == "decor_density":
                value = _choice(value, DECOR_DENSITIES, label="Decor density")
            elif key == "background_theme":
                value = _choice(value, BACKGROUND_THEMES, label="Background theme")
            elif key in _BOOLEAN_SETTINGS:
                value = 1 if value else 0
            elif key == "display_name":
                value = (value or "").strip() or None
            assignments.append(f"{key} = ?")
            values.append(value)

        with self._lock, self._conn:
            self._ensure_shelf_settings(user_id)
            if assignments:
                assignments.append("updated_at = ?")
                values.extend([utc_now(), user_id])
                self._conn.execute(
                    f"UPDATE shelf_settings SET {', '.join(assignments)} WHERE user_id = ?",
                    values,
                )
            row = self._one("SELECT * FROM shelf_settings WHERE user_id = ?", (user_id,))
        return _settings_from_row(row)

    def get_public_shelf(self, share_id: str) -> Dict[str, Any]:
        with self._lock:
            settings = self._one(
                "SELECT * FROM shelf_settings WHERE share_id = ? AND is_public = 1", (share_id,)
            )
            if settings is None:
                raise LookupError("Shelf not found or not public")
            owner_id = settings["user_id"]
            profile = self._one(
                "SELECT username, avatar_url FROM profiles WHERE user_id = ?", (owner_id,)
            )
            books = self._all(
                "SELECT * FROM books WHERE user_id = ? ORDER BY created_at DESC", (owner_id,)
            )
        appearance = _settings_from_row(settings)
        return {
            "user_id": owner_id,
            "display_name": appearance.pop("display_name"),
            "username": profile["username"] if profile else None,
            "avatar_url": profile["avatar_url"] if profile else None,
            "appearance": {key: appearance[key] for key in _SHELF_SETTING_FIELDS if key in appearance},
            "books": [_book_from_row(row) for row in books],
        }

    # --------------------------------------------------------------------- #
    # Follows
    # --------------------------------------------------------------------- #
    def follow(self, follower_id: str, following_id: str) -> Dict[str, Any]:
        if follower_id == following_id:
            raise ValueError("You cannot follow yourself")
        follow_id = _new_id()
        with self._lock, self._conn:
            if self._one("SELECT 1 FROM users WHERE id = ?", (following_id,)) is None:
                raise LookupError("User not found")
            self._conn.execute(
                """
                INSERT INTO follows (id, follower_id, following_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (follow_id, follower_id, following_id, utc_now()),
            )
            row = self._one("SELECT * FROM follows WHERE id = ?", (follow_id,))
        return dict(row)

    def unfollow(self, follower_id: str, following_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM follows WHERE follower_id = ? AND following_id = ?",
                (follower_id, following_id),
            )
        return cursor.rowcount > 0

    def is_following(self, follower_id: str, following_id: str) -> bool:
        with self._lock:
            row = self._one(
                "SELECT 1 FROM follows WHERE follower_id = ? AND following_id = ?",
                (follower_id, following_id),
            )
        return row is not None

    def _follow_list(self, join_column: str, filter_column: str, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                f"""
                SELECT f.{join_column} AS user_id, f.created_at AS followed_at,
                       p.username, p.display_name, p.avatar_url,
                       s.share_id, s.is_public
                FROM follows f
                LEFT JOIN profiles p ON p.user_id = f.{join_column}
                LEFT JOIN shelf_settings s ON s.user_id = f.{join_column}
                WHERE f.{filter_column} = ?
                ORDER BY f.created_at DESC
                """,
                (user_id,),
            )
        results = []
        for row in rows:
            entry = dict(row)
            entry["is_public"] = bool(entry["is_public"])
            if not entry["is_public"]:
                entry["share_id"] = None
            results.append(entry)
        return results

    def list_followers(self, user_id: str) -> List[Dict[str, Any]]:
        return self._follow_list("follower_id", "following_id", user_id)

    def list_following(self, user_id: str) -> List[Dict[str, Any]]:
        return self._follow_list("following_id", "follower_id", user_id)

    def following_feed(self, user_id: str, *, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                """
                SELECT b.*, p.username, p.avatar_url
                FROM books b
                JOIN follows f ON f.following_id = b.user_id
                LEFT JOIN profiles p ON p.user_id = b.user_id
                WHERE f.follower_id = ?
                ORDER BY b.created_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
        return [_book_from_row(row) for row in rows]

    # --------------------------------------------------------------------- #
    # Likes, comments and notes
    # --------------------------------------------------------------------- #
    def like_book(self, user_id: str, book_id: str) -> None:
        with self._lock, self._conn:
            self._require_visible_book(user_id, book_id)
            self._conn.execute(
                """
                INSERT OR IGNORE INTO book_likes (id, book_id, user_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (_new_id(), book_id, user_id, utc_now()),
            )

    def unlike_book(self, user_id: str, book_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM book_likes WHERE book_id = ? AND user_id = ?", (book_id, user_id)
            )

    def book_likes(self, viewer_id: str, book_id: str) -> Dict[str, Any]:
        with self._lock:
            self._require_visible_book(viewer_id, book_id)
            rows = self._all(
                """
                SELECT l.user_id, l.created_at, p.username, p.avatar_url
                FROM book_likes l
                LEFT JOIN profiles p ON p.user_id = l.user_id
                WHERE l.book_id = ?
                ORDER BY l.created_at DESC
                """,
                (book_id,),
            )
        likes = [dict(row) for row in rows]
        return {
            "count": len(likes),
            "liked": any(like["user_id"] == viewer_id for like in likes),
            "likes": likes,
        }

    def add_comment(self, user_id: str, book_id: str, content: str) -> Dict[str, Any]:
        text = _trimmed(content, label="Comment", maximum=MAX_COMMENT)
        comment_id = _new_id()
        with self._lock, self._conn:
            self._require_visible_book(user_id, book_id)
            self._conn.execute(
                """
                INSERT INTO book_comments (id, book_id, user_id, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (comment_id, book_id, user_id, text, utc_now()),
            )
            row = self._one("SELECT * FROM book_comments WHERE id = ?", (comment_id,))
        return dict(row)

    def list_comments(self, viewer_id: str, book_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._require_visible_book(viewer_id, book_id)
            rows = self._all(
                """
                SELECT c.*, p.username, p.avatar_url
                FROM book_comments c
                LEFT JOIN profiles p ON p.user_id = c.user_id
                WHERE c.book_id = ?
                ORDER BY c.created_at
                """,
                (book_id,),
            )
        return [dict(row) for row in rows]

    def delete_comment(self, user_id: str, comment_id: str) -> None:
        with self._lock, self._conn:
            row = self._one("SELECT user_id FROM book_comments WHERE id = ?", (comment_id,))
            if row is None:
                raise LookupError("Comment not found")
            if row["user_id"] != user_id:
                raise PermissionError("You can only delete your own comments")
            self._conn.execute("DELETE FROM book_comments WHERE id = ?", (comment_id,))

    def upsert_note(
        self,
        user_id: str,
        book_id: str,
        content: str,
        color: str = "yellow",
    ) -> Dict[str, Any]:
        text = _trimmed(content, label="Note content", maximum=MAX_NOTE)
        note_color = _choice(color or "yellow", NOTE_COLORS, label="Note color")
        now = utc_now()
        with self._lock, self._conn:
            self._require_owned_book(user_id, book_id)
            self._conn.execute(
                """
                INSERT INTO book_notes (id, book_id, user_id, content, color, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(book_id, user_id) DO UPDATE SET
                    content = excluded.content,
                    color = excluded.color,
                    updated_at = excluded.updated_at
                """,
                (_new_id(), book_id, user_id, text, note_color, now, now),
            )
            row = self._one(
                "SELECT * FROM book_notes WHERE book_id = ? AND user_id = ?", (book_id, user_id)
            )
        return dict(row)

    def get_note(self, viewer_id: str, book_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            book = self._require_visible_book(viewer_id, book_id)
            row = self._one(
                "SELECT * FROM book_notes WHERE book_id = ? AND user_id = ?",
                (book_id, book["user_id"]),
            )
        return dict(row) if row else None

    def delete_note(self, user_id: str, book_id: str) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM book_notes WHERE book_id = ? AND user_id = ?", (book_id, user_id)
            )
            if cursor.rowcount == 0:
                raise LookupError("Note not found")

    # --------------------------------------------------------------------- #
    # Book clubs
    # --------------------------------------------------------------------- #
    def create_club(self, owner_id: str, name: str, description: Optional[str] = None) -> Dict[str, Any]:
        club_name = _trimmed(name, label="Club name", maximum=MAX_CLUB_NAME)
        club_description = (description or "").strip() or None
        if club_description and len(club_description) > MAX_CLUB_DESCRIPTION:
            raise ValueError(f"Description must be {MAX_CLUB_DESCRIPTION} characters or less")
        club_id = _new_id()
        now = utc_now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO book_clubs (id, name, description, invite_code, owner_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (club_id, club_name, club_description, secrets.token_hex(4), owner_id, now, now),
            )
            self._conn.execute(
                """
                INSERT INTO book_club_members (id, club_id, user_id, role, joined_at)
                VALUES (?, ?, ?, 'owner', ?)
                """,
                (_new_id(), club_id, owner_id, now),
            )
            row = self._require_club(club_id)
        return dict(row)

    def list_clubs(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                """
                SELECT c.*, m.role,
                       (SELECT COUNT(*) FROM book_club_members x WHERE x.club_id = c.id) AS member_count
                FROM book_clubs c
                JOIN book_club_members m ON m.club_id = c.id AND m.user_id = ?
                ORDER BY c.created_at DESC
                """,
                (user_id,),
            )
        return [dict(row) for row in rows]

    def get_club(self, user_id: str, club_id: str) -> Dict[str, Any]:
        with self._lock:
            role = self._require_member(club_id, user_id)
            club = dict(self._require_club(club_id))
            members = self._all(
                """
                SELECT m.user_id, m.role, m.joined_at, p.username, p.display_name, p.avatar_url
                FROM book_club_members m
                LEFT JOIN profiles p ON p.user_id = m.user_id
                WHERE m.club_id = ?
                ORDER BY m.joined_at
                """,
                (club_id,),
            )
            suggestions = self._all(
                """
                SELECT s.*, p.username AS suggested_by_username,
                       (SELECT COUNT(*) FROM book_club_votes v WHERE v.suggestion_id = s.id) AS vote_count,
                       EXISTS (
                           SELECT 1 FROM book_club_votes v
                           WHERE v.suggestion_id = s.id AND v.user_id = ?
                       ) AS has_voted
                FROM book_club_suggestions s
                LEFT JOIN profiles p ON p.user_id = s.suggested_by
                WHERE s.club_id = ?
                ORDER BY vote_count DESC, s.created_at
                """,
                (user_id, club_id),
            )
        club["role"] = role
        club["members"] = [dict(row) for row in members]
        club["suggestions"] = [
            {**dict(row), "has_voted": bool(row["has_voted"])} for row in suggestions
        ]
        return club

    def delete_club(self, user_id: str, club_id: str) -> None:
        with self._lock, self._conn:
            club = self._require_club(club_id)
            if club["owner_id"] != user_id:
                raise PermissionError("Only the club owner can delete the club")
            self._conn.execute("DELETE FROM book_clubs WHERE id = ?", (club_id,))

    def club_by_invite(self, invite_code: str) -> Dict[str, Any]:
        with self._lock:
            row = self._one(
                """
                SELECT c.id, c.name, c.description,
                       (SELECT COUNT(*) FROM book_club_members m WHERE m.club_id = c.id) AS member_count
                FROM book_clubs c
                WHERE c.invite_code = ?
                """,
                ((invite_code or "").strip().lower(),),
            )
        if row is None:
            raise LookupError("Invalid invite code")
        return dict(row)

    def join_club(self, user_id: str, invite_code: str) -> Dict[str, Any]:
        with self._lock, self._conn:
            club = self._one(
                "SELECT * FROM book_clubs WHERE invite_code = ?", ((invite_code or "").strip().lower(),)
            )
            if club is None:
                raise LookupError("Invalid invite code")
            self._conn.execute(
                """
                INSERT OR IGNORE INTO book_club_members (id, club_id, user_id, role, joined_at)
                VALUES (?, ?, ?, 'member', ?)
                """,
                (_new_id(), club["id"], user_id, utc_now()),
            )
        return dict(club)

    def leave_club(self, user_id: str, club_id: str) -> None:
        with self._lock, self._conn:
            role = self._require_member(club_id, user_id)
            if role == "owner":
                raise ValueError("The owner cannot leave the club; delete it instead")
            self._conn.execute(
                "DELETE FROM book_club_members WHERE club_id = ? AND user_id = ?", (club_id, user_id)
            )

    def suggest_book(self, user_id: str, club_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        title = (payload.get("title") or "").strip()
        if not title:
            raise ValueError("Title is required")
        suggestion_id = _new_id()
        with self._lock, self._conn:
            self._require_member(club_id, user_id)
            self._conn.execute(
                """
                INSERT INTO book_club_suggestions
                    (id, club_id, suggested_by, title, author, cover_url, isbn, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    suggestion_id,
                    club_id,
                    user_id,
                    title,
                    (payload.get("author") or "").strip() or "Unknown Author",
                    payload.get("cover_url"),
                    payload.get("isbn"),
                    utc_now(),
                ),
            )
            row = self._require_suggestion(suggestion_id)
        return dict(row)

    def vote(self, user_id: str, suggestion_id: str) -> None:
        with self._lock, self._conn:
            suggestion = self._require_suggestion(suggestion_id)
            self._require_member(suggestion["club_id"], user_id)
            self._conn.execute(
                """
                INSERT INTO book_club_votes (id, suggestion_id, user_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (_new_id(), suggestion_id, user_id, utc_now()),
            )

    def unvote(self, user_id: str, suggestion_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM book_club_votes WHERE suggestion_id = ? AND user_id = ?",
                (suggestion_id, user_id),
            )

    def set_suggestion_status(self, user_id: str, suggestion_id: str, status: str) -> Dict[str, Any]:
        """Move a suggestion through suggested -> reading -> read.

        Finishing a book clears the votes on every other open suggestion in
        the club. Any other status clears the finish date.
        """
        new_status = _choice(status, SUGGESTION_STATUSES, label="Status")
        with self._lock, self._conn:
            suggestion = self._require_suggestion(suggestion_id)
            club = self._require_club(suggestion["club_id"])
            if club["owner_id"] != user_id:
                raise PermissionError("Only the club owner can change a book's status")

            if new_status == "read":
                finished_at = suggestion["finished_at"] or utc_now()
                if suggestion["status"] != "read":
                    self._conn.execute(
                        """
                        DELETE FROM book_club_votes
                        WHERE suggestion_id IN (
                            SELECT id FROM book_club_suggestions
                            WHERE club_id = ? AND status = 'suggested' AND id != ?
                        )
                        """,
                        (club["id"], suggestion_id),
                    )
            else:
                finished_at = None
            self._conn.execute(
                "UPDATE book_club_suggestions SET status = ?, finished_at = ? WHERE id = ?",
                (new_status, finished_at, suggestion_id),
            )
            row = self._require_suggestion(suggestion_id)
        return dict(row)

    def remove_suggestion(self, user_id: str, suggestion_id: str) -> None:
        with self._lock, self._conn:
            suggestion = self._require_suggestion(suggestion_id)
            club = self._require_club(suggestion["club_id"])
            if user_id not in (suggestion["suggested_by"], club["owner_id"]):
                raise PermissionError("Only the suggester or the club owner can remove this book")
            self._conn.execute("DELETE FROM book_club_suggestions WHERE id = ?", (suggestion_id,))

    def list_reflections(self, user_id: str, suggestion_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            suggestion = self._require_suggestion(suggestion_id)
            self._require_member(suggestion["club_id"], user_id)
            rows = self._all(
                """
                SELECT r.*, p.username, p.avatar_url
                FROM book_club_reflections r
                LEFT JOIN profiles p ON p.user_id = r.user_id
                WHERE r.suggestion_id = ?
                ORDER BY r.created_at
                """,
                (suggestion_id,),
            )
        reflections = []
        for row in rows:
            entry = dict(row)
            entry["is_anonymous"] = bool(entry["is_anonymous"])
            entry["is_mine"] = entry["user_id"] == user_id
            if entry["is_anonymous"] and not entry["is_mine"]:
                entry.update(user_id=None, username=None, avatar_url=None)
            reflections.append(entry)
        return reflections

    def upsert_reflection(
        self,
        user_id: str,
        suggestion_id: str,
        *,
        rating: int,
        content: str,
        is_anonymous: bool = False,
    ) -> Dict[str, Any]:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        text = _trimmed(content, label="Reflection", maximum=MAX_REFLECTION)
        now = utc_now()
        with self._lock, self._conn:
            suggestion = self._require_suggestion(suggestion_id)
            self._require_member(suggestion["club_id"], user_id)
            self._conn.execute(
                """
                INSERT INTO book_club_reflections
                    (id, suggestion_id, user_id, rating, content, is_anonymous, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(suggestion_id, user_id) DO UPDATE SET
                    rating = excluded.rating,
                    content = excluded.content,
                    is_anonymous = excluded.is_anonymous,
                    updated_at = excluded.updated_at
                """,
                (_new_id(), suggestion_id, user_id, rating, text, 1 if is_anonymous else 0, now, now),
            )
            row = self._one(
                "SELECT * FROM book_club_reflections WHERE suggestion_id = ? AND user_id = ?",
                (suggestion_id, user_id),
            )
        reflection = dict(row)
        reflection["is_anonymous"] = bool(reflection["is_anonymous"])
        return reflection

    def delete_reflection(self, user_id: str, reflection_id: str) -> None:
        with self._lock, self._conn:
            row = self._one("SELECT user_id FROM book_club_reflections WHERE id = ?", (reflection_id,))
            if row is None:
                raise LookupError("Reflection not found")
            if row["user_id"] != user_id:
                raise PermissionError("You can only delete your own reflection")
            self._conn.execute("DELETE FROM book_club_reflections WHERE id = ?", (reflection_id,))

    # --------------------------------------------------------------------- #
    # Recommendations
    # --------------------------------------------------------------------- #
    def recommend_book(
        self,
        from_user_id: str,
        to_user_id: str,
        book: Dict[str, Any],
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        if from_user_id == to_user_id:
            raise ValueError("You cannot recommend a book to yourself")
        title = (book.get("title") or "").strip()
        if not title:
            raise ValueError("Title is required")
        note = (message or "").strip() or None
        if note and len(note) > MAX_RECOMMENDATION_MESSAGE:
            raise ValueError(f"Message must be {MAX_RECOMMENDATION_MESSAGE} characters or less")
        recommendation_id = _new_id()
        with self._lock, self._conn:
            if self._one("SELECT 1 FROM users WHERE id = ?", (to_user_id,)) is None:
                raise LookupError("User not found")
            self._conn.execute(
                """
                INSERT INTO book_recommendations (
                    id, from_user_id, to_user_id, book_title, book_author,
                    book_cover_url, book_isbn, message, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    recommendation_id,
                    from_user_id,
                    to_user_id,
                    title,
                    (book.get("author") or "").strip() or "Unknown Author",
                    book.get("cover_url"),
                    book.get("isbn"),
                    note,
                    utc_now(),
                ),
            )
            row = self._one("SELECT * FROM book_recommendations WHERE id = ?", (recommendation_id,))
        return dict(row)

    def pending_recommendations(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._all(
                """
                SELECT r.*, p.username AS from_username, p.avatar_url AS from_avatar_url
                FROM book_recommendations r
                LEFT JOIN profiles p ON p.user_id = r.from_user_id
                WHERE r.to_user_id = ? AND r.status = 'pending'
                ORDER BY r.created_at DESC
                """,
                (user_id,),
            )
        return [dict(row) for row in rows]

    def respond_to_recommendation(self, user_id: str, recommendation_id: str, *, accept: bool) -> Dict[str, Any]:
        with self._lock, self._conn:
            row = self._one("SELECT * FROM book_recommendations WHERE id = ?", (recommendation_id,))
            if row is None:
                raise LookupError("Recommendation not found")
            if row["to_user_id"] != user_id:
                raise PermissionError("This recommendation was sent to someone else")
            if row["status"] != "pending":
                raise ValueError("This recommendation has already been answered")

            book = None
            if accept:
                book_id = self._insert_book(
                    user_id,
                    {
                        "title": row["book_title"],
                        "author": row["book_author"],
                        "cover_url": row["book_cover_url"],
                        "isbn": row["book_isbn"],
                        "status": "want-to-read",
                    },
                )
                book = _book_from_row(self._require_book(book_id))
            self._conn.execute(
                "UPDATE book_recommendations SET status = ?, responded_at = ? WHERE id = ?",
                ("accepted" if accept else "declined", utc_now(), recommendation_id),
            )
            updated = dict(self._one("SELECT * FROM book_recommendations WHERE id = ?", (recommendation_id,)))
        updated["book"] = book
        return updated

    # --------------------------------------------------------------------- #
    # Notifications
    # --------------------------------------------------------------------- #
    def notification_summary(self, user_id: str) -> Dict[str, Any]:
        with self._lock, self._conn:
            seen = self._ensure_notification_settings(user_id)
            likes = self._all(
                """
                SELECT l.book_id, l.user_id, l.created_at, b.title, p.username
                FROM book_likes l
                JOIN books b ON b.id = l.book_id
                LEFT JOIN profiles p ON p.user_id = l.user_id
                WHERE b.user_id = ? AND l.user_id != ? AND l.created_at > ?
                ORDER BY l.created_at DESC
                """,
                (user_id, user_id, seen["last_seen_likes_at"]),
            )
            followers = self._all(
                """
                SELECT f.follower_id AS user_id, f.created_at, p.username
                FROM follows f
                LEFT JOIN profiles p ON p.user_id = f.follower_id
                WHERE f.following_id = ? AND f.created_at > ?
                ORDER BY f.created_at DESC
                """,
                (user_id, seen["last_seen_followers_at"]),
            )
            recommendations = self._all(
                """
                SELECT r.id, r.book_title, r.created_at, p.username AS from_username
                FROM book_recommendations r
                LEFT JOIN profiles p ON p.user_id = r.from_user_id
                WHERE r.to_user_id = ? AND r.status = 'pending' AND r.created_at > ?
                ORDER BY r.created_at DESC
                """,
                (user_id, seen["last_seen_recommendations_at"]),
            )
        return {
            "likes": [dict(row) for row in likes],
            "followers": [dict(row) for row in followers],
            "recommendations": [dict(row) for row in recommendations],
            "total": len(likes) + len(followers) + len(recommendations),
        }

    def mark_notifications_seen(self, user_id: str, kinds: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        selected = list(kinds) if kinds else list(NOTIFICATION_KINDS)
        for kind in selected:
            _choice(kind, NOTIFICATION_KINDS, label="Notification kind")
        now = utc_now()
        with self._lock, self._conn:
            self._ensure_notification_settings(user_id)
            assignments = ", ".join(f"last_seen_{kind}_at = ?" for kind in selected)
            self._conn.execute(
                f"UPDATE notification_settings SET {assignments} WHERE user_id = ?",
                (*([now] * len(selected)), user_id),
            )
            row = self._one("SELECT * FROM notification_settings WHERE user_id = ?", (user_id,))
        return dict(row)


# ------------------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------------------
def get_store(db_path: Optional[Path] = None) -> ShelvyStore:
    return ShelvyStore(db_path=db_path)
