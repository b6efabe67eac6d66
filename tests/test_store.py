from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Tuple

import pytest

from store import ShelvyStore


def _create_store(tmp_path: Path) -> ShelvyStore:
    db_path = tmp_path / "shelvy.db"
    if db_path.exists():
        db_path.unlink()
    return ShelvyStore(db_path=db_path)


def _make_user(store: ShelvyStore, name: str, *, public: bool = False) -> str:
    user = store.create_user(f"{name}@example.com", "hash")
    store.create_profile(user["id"], name)
    if public:
        store.update_shelf_settings(user["id"], {"is_public": True})
    return user["id"]


@pytest.fixture
def store(tmp_path: Path):
    store = _create_store(tmp_path)
    yield store
    store.close()


# ---------------------------------------------------------------------------
# Users and profiles
# ---------------------------------------------------------------------------
def test_create_user_normalizes_email_and_rejects_duplicates(store: ShelvyStore) -> None:
    user = store.create_user("  Reader@Example.COM ", "hash")
    assert user["email"] == "reader@example.com"
    assert store.get_user_credentials("READER@example.com")["id"] == user["id"]

    with pytest.raises(sqlite3.IntegrityError):
        store.create_user("reader@example.com", "other")
    with pytest.raises(ValueError):
        store.create_user("not-an-email", "hash")


def test_profile_creation_sets_up_private_shelf(store: ShelvyStore) -> None:
    user_id = _make_user(store, "ada")

    settings = store.get_shelf_settings(user_id)
    assert settings["is_public"] is False
    assert settings["shelf_skin"] == "oak"
    assert len(settings["share_id"]) == 12

    with pytest.raises(ValueError):
        store.update_profile(user_id, {"username": "x"})
    with pytest.raises(sqlite3.IntegrityError):
        other = store.create_user("other@example.com", "hash")
        store.create_profile(other["id"], "ADA")


def test_update_profile(store: ShelvyStore) -> None:
    user_id = _make_user(store, "ada")
    profile = store.update_profile(user_id, {"display_name": "  Ada L. ", "avatar_url": "/api/avatars/a.jpg"})
    assert profile["display_name"] == "Ada L."
    assert profile["avatar_url"] == "/api/avatars/a.jpg"

    with pytest.raises(LookupError):
        store.update_profile("missing", {"display_name": "x"})


def test_find_users_only_returns_public_shelves(store: ShelvyStore) -> None:
    viewer = _make_user(store, "viewer", public=True)
    _make_user(store, "bookworm", public=True)
    _make_user(store, "bookhidden")

    results = store.find_users(viewer, "book")
    assert [result["username"] for result in results] == ["bookworm"]
    assert results[0]["matched_by"] == "username"

    by_email = store.find_users(viewer, "bookworm@example.com")
    assert [result["username"] for result in by_email] == ["bookworm"]

    assert store.find_users(viewer, "viewer") == []
    assert store.find_users(viewer, "b") == []


def test_roles(store: ShelvyStore) -> None:
    user_id = _make_user(store, "admin")
    assert not store.has_role(user_id)
    store.grant_role(user_id)
    store.grant_role(user_id)
    assert store.has_role(user_id)
    with pytest.raises(LookupError):
        store.grant_role("missing")


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------
def test_add_book_defaults(store: ShelvyStore) -> None:
    user_id = _make_user(store, "ada")
    book = store.add_book(user_id, {"title": "  Dune ", "author": "", "categories": ["Fiction"]})

    assert book["title"] == "Dune"
    assert book["author"] == "Unknown Author"
    assert book["status"] == "want-to-read"
    assert book["color"] == "#8B4513"
    assert book["categories"] == ["Fiction"]
    assert store.has_book(user_id, "dune", "unknown author")

    with pytest.raises(ValueError):
        store.add_book(user_id, {"title": "   "})
    with pytest.raises(ValueError):
        store.add_book(user_id, {"title": "Dune", "status": "abandoned"})


def test_only_owner_can_change_books(store: ShelvyStore) -> None:
    owner = _make_user(store, "owner")
    stranger = _make_user(store, "stranger")
    book = store.add_book(owner, {"title": "Dune", "author": "Frank Herbert"})

    updated = store.update_book(owner, book["id"], {"status": "read", "completed_at": "2025-01-01"})
    assert updated["status"] == "read"
    assert updated["completed_at"] == "2025-01-01"

    with pytest.raises(PermissionError):
        store.update_book(stranger, book["id"], {"status": "reading"})
    with pytest.raises(PermissionError):
        store.delete_book(stranger, book["id"])
    with pytest.raises(ValueError):
        store.update_book(owner, book["id"], {"title": ""})

    store.delete_book(owner, book["id"])
    with pytest.raises(LookupError):
        store.get_book(owner, book["id"])


def test_book_visibility_follows_shelf_rules(store: ShelvyStore) -> None:
    owner = _make_user(store, "owner")
    follower = _make_user(store, "follower")
    clubmate = _make_user(store, "clubmate")
    stranger = _make_user(store, "stranger")
    book = store.add_book(owner, {"title": "Dune", "author": "Frank Herbert"})

    store.follow(follower, owner)
    club = store.create_club(owner, "Readers")
    store.join_club(clubmate, club["invite_code"])

    assert store.get_book(owner, book["id"])["id"] == book["id"]
    assert store.get_book(follower, book["id"])["id"] == book["id"]
    assert store.get_book(clubmate, book["id"])["id"] == book["id"]
    with pytest.raises(PermissionError):
        store.get_book(stranger, book["id"])

    store.update_shelf_settings(owner, {"is_public": True})
    assert store.get_book(stranger, book["id"])["id"] == book["id"]


def test_metadata_queues_and_propagation(store: ShelvyStore) -> None:
    first = _make_user(store, "first")
    second = _make_user(store, "second")
    a = store.add_book(first, {"title": "Dune", "author": "Frank Herbert"})
    b = store.add_book(second, {"title": "dune", "author": "frank herbert"})
    store.add_book(
        second,
        {
            "title": "Complete",
            "author": "Someone",
            "isbn": "1",
            "page_count": 10,
            "description": "d",
            "categories": ["x"],
        },
    )

    assert {book["id"] for book in store.books_pending_isbndb(10)} == {a["id"], b["id"]}
    assert store.count_pending_isbndb() == 2
    assert set(store.books_with_title_author("DUNE", "Frank Herbert")) == {a["id"], b["id"]}

    touched = store.apply_metadata([a["id"], b["id"]], {"page_count": 412, "isbndb_attempted_at": "now", "title": "x"})
    assert touched == 2
    assert store.count_pending_isbndb() == 0
    assert store.get_book(second, b["id"])["page_count"] == 412
    assert store.get_book(second, b["id"])["title"] == "dune"
    assert store.apply_metadata([], {"page_count": 1}) == 0


# ---------------------------------------------------------------------------
# Shelf settings and follows
# ---------------------------------------------------------------------------
def test_shelf_settings_validation(store: ShelvyStore) -> None:
    user_id = _make_user(store, "ada")
    settings = store.update_shelf_settings(
        user_id, {"shelf_skin": "walnut", "show_plant": False, "background_theme": "space", "decor_density": None}
    )
    assert settings["shelf_skin"] == "walnut"
    assert settings["show_plant"] is False
    assert settings["decor_density"] == "balanced"

    with pytest.raises(ValueError):
        store.update_shelf_settings(user_id, {"shelf_skin": "plastic"})
    with pytest.raises(ValueError):
        store.update_shelf_settings(user_id, {"background_theme": "mars"})


def test_public_shelf_requires_public_flag(store: ShelvyStore) -> None:
    user_id = _make_user(store, "ada")
    store.add_book(user_id, {"title": "Dune", "author": "Frank Herbert"})
    share_id = store.get_shelf_settings(user_id)["share_id"]

    with pytest.raises(LookupError):
        store.get_public_shelf(share_id)

    store.update_shelf_settings(user_id, {"is_public": True, "display_name": "Ada's Books"})
    shelf = store.get_public_shelf(share_id)
    assert shelf["username"] == "ada"
    assert shelf["display_name"] == "Ada's Books"
    assert shelf["appearance"]["is_public"] is True
    assert [book["title"] for book in shelf["books"]] == ["Dune"]


def test_follow_rules(store: ShelvyStore) -> None:
    ada = _make_user(store, "ada", public=True)
    bob = _make_user(store, "bob")

    with pytest.raises(ValueError):
        store.follow(ada, ada)
    with pytest.raises(LookupError):
        store.follow(ada, "missing")

    store.follow(bob, ada)
    with pytest.raises(sqlite3.IntegrityError):
        store.follow(bob, ada)

    assert store.is_following(bob, ada)
    followers = store.list_followers(ada)
    assert [entry["username"] for entry in followers] == ["bob"]
    assert followers[0]["share_id"] is None
    following = store.list_following(bob)
    assert following[0]["username"] == "ada"
    assert following[0]["share_id"] is not None

    store.add_book(ada, {"title": "Dune", "author": "Frank Herbert"})
    feed = store.following_feed(bob)
    assert [(item["title"], item["username"]) for item in feed] == [("Dune", "ada")]

    assert store.unfollow(bob, ada)
    assert not store.unfollow(bob, ada)
    assert store.following_feed(bob) == []


# ---------------------------------------------------------------------------
# Likes, comments and notes
# ---------------------------------------------------------------------------
def test_likes_and_comments(store: ShelvyStore) -> None:
    owner = _make_user(store, "owner", public=True)
    fan = _make_user(store, "fan")
    book = store.add_book(owner, {"title": "Dune", "author": "Frank Herbert"})

    store.like_book(fan, book["id"])
    store.like_book(fan, book["id"])
    likes = store.book_likes(fan, book["id"])
    assert likes["count"] == 1
    assert likes["liked"] is True
    assert store.book_likes(owner, book["id"])["liked"] is False

    store.unlike_book(fan, book["id"])
    assert store.book_likes(fan, book["id"])["count"] == 0

    comment = store.add_comment(fan, book["id"], "  Loved it  ")
    assert comment["content"] == "Loved it"
    assert [c["username"] for c in store.list_comments(owner, book["id"])] == ["fan"]
    with pytest.raises(ValueError):
        store.add_comment(fan, book["id"], "x" * 501)
    with pytest.raises(PermissionError):
        store.delete_comment(owner, comment["id"])
    store.delete_comment(fan, comment["id"])
    with pytest.raises(LookupError):
        store.delete_comment(fan, comment["id"])


def test_notes_belong_to_book_owner(store: ShelvyStore) -> None:
    owner = _make_user(store, "owner", public=True)
    visitor = _make_user(store, "visitor")
    book = store.add_book(owner, {"title": "Dune", "author": "Frank Herbert"})

    note = store.upsert_note(owner, book["id"], "Reread the appendix")
    assert note["color"] == "yellow"
    updated = store.upsert_note(owner, book["id"], "Reread chapter 3", "blue")
    assert updated["id"] == note["id"]
    assert updated["content"] == "Reread chapter 3"

    assert store.get_note(visitor, book["id"])["content"] == "Reread chapter 3"
    with pytest.raises(PermissionError):
        store.upsert_note(visitor, book["id"], "Mine now")
    with pytest.raises(ValueError):
        store.upsert_note(owner, book["id"], "x" * 201)
    with pytest.raises(ValueError):
        store.upsert_note(owner, book["id"], "ok", "purple")

    store.delete_note(owner, book["id"])
    assert store.get_note(owner, book["id"]) is None
    with pytest.raises(LookupError):
        store.delete_note(owner, book["id"])


# ---------------------------------------------------------------------------
# Book clubs
# ---------------------------------------------------------------------------
def _club_with_members(store: ShelvyStore) -> Tuple[str, str, str, dict]:
    owner = _make_user(store, "owner")
    member = _make_user(store, "member")
    club = store.create_club(owner, "  Sci-Fi Readers ", "Spaceships")
    store.join_club(member, club["invite_code"].upper())
    return owner, member, club["id"], club


def test_club_membership(store: ShelvyStore) -> None:
    owner, member, club_id, club = _club_with_members(store)
    outsider = _make_user(store, "outsider")

    assert club["name"] == "Sci-Fi Readers"
    assert len(club["invite_code"]) == 8
    assert store.club_by_invite(club["invite_code"])["member_count"] == 2

    store.join_club(member, club["invite_code"])
    detail = store.get_club(member, club_id)
    assert detail["role"] == "member"
    assert [m["username"] for m in detail["members"]] == ["owner", "member"]

    assert [c["id"] for c in store.list_clubs(owner)] == [club_id]
    with pytest.raises(PermissionError):
        store.get_club(outsider, club_id)
    with pytest.raises(LookupError):
        store.join_club(outsider, "nope")
    with pytest.raises(ValueError):
        store.leave_club(owner, club_id)
    with pytest.raises(ValueError):
        store.create_club(owner, "x" * 51)

    store.leave_club(member, club_id)
    assert store.list_clubs(member) == []

    with pytest.raises(PermissionError):
        store.delete_club(member, club_id)
    store.delete_club(owner, club_id)
    with pytest.raises(LookupError):
        store.get_club(owner, club_id)


def test_suggestion_lifecycle(store: ShelvyStore) -> None:
    owner, member, club_id, _ = _club_with_members(store)
    dune = store.suggest_book(member, club_id, {"title": "Dune", "author": "Frank Herbert"})
    foundation = store.suggest_book(owner, club_id, {"title": "Foundation", "author": ""})
    assert foundation["author"] == "Unknown Author"

    store.vote(member, dune["id"])
    store.vote(owner, dune["id"])
    store.vote(member, foundation["id"])
    with pytest.raises(sqlite3.IntegrityError):
        store.vote(member, dune["id"])

    suggestions = store.get_club(member, club_id)["suggestions"]
    assert [(s["title"], s["vote_count"], s["has_voted"]) for s in suggestions] == [
        ("Dune", 2, True),
        ("Foundation", 1, True),
    ]

    with pytest.raises(PermissionError):
        store.set_suggestion_status(member, dune["id"], "reading")
    with pytest.raises(ValueError):
        store.set_suggestion_status(owner, dune["id"], "done")

    reading = store.set_suggestion_status(owner, dune["id"], "reading")
    assert reading["finished_at"] is None
    finished = store.set_suggestion_status(owner, dune["id"], "read")
    assert finished["finished_at"] is not None

    suggestions = {s["title"]: s for s in store.get_club(owner, club_id)["suggestions"]}
    assert suggestions["Foundation"]["vote_count"] == 0
    assert suggestions["Dune"]["vote_count"] == 2

    reopened = store.set_suggestion_status(owner, dune["id"], "suggested")
    assert reopened["finished_at"] is None

    store.unvote(member, dune["id"])
    assert {s["title"]: s["vote_count"] for s in store.get_club(owner, club_id)["suggestions"]}["Dune"] == 1


def test_resaving_a_finished_book_keeps_votes_on_next_picks(store: ShelvyStore) -> None:
    owner, member, club_id, _ = _club_with_members(store)
    done = store.suggest_book(owner, club_id, {"title": "Done", "author": "A"})
    store.set_suggestion_status(owner, done["id"], "read")
    upcoming = store.suggest_book(member, club_id, {"title": "Next", "author": "B"})
    store.vote(member, upcoming["id"])

    store.set_suggestion_status(owner, done["id"], "read")

    counts = {s["title"]: s["vote_count"] for s in store.get_club(owner, club_id)["suggestions"]}
    assert counts["Next"] == 1


def test_remove_suggestion_permissions(store: ShelvyStore) -> None:
    owner, member, club_id, club = _club_with_members(store)
    other = _make_user(store, "other")
    store.join_club(other, club["invite_code"])
    suggestion = store.suggest_book(member, club_id, {"title": "Dune"})

    with pytest.raises(PermissionError):
        store.remove_suggestion(other, suggestion["id"])
    store.remove_suggestion(owner, suggestion["id"])
    with pytest.raises(LookupError):
        store.remove_suggestion(member, suggestion["id"])


def test_reflections_hide_anonymous_authors(store: ShelvyStore) -> None:
    owner, member, club_id, _ = _club_with_members(store)
    suggestion = store.suggest_book(owner, club_id, {"title": "Dune"})

    store.upsert_reflection(member, suggestion["id"], rating=4, content="Great", is_anonymous=True)
    updated = store.upsert_reflection(member, suggestion["id"], rating=5, content="Even better", is_anonymous=True)
    assert updated["rating"] == 5
    assert updated["is_anonymous"] is True

    seen_by_owner = store.list_reflections(owner, suggestion["id"])
    assert len(seen_by_owner) == 1
    assert seen_by_owner[0]["user_id"] is None
    assert seen_by_owner[0]["username"] is None
    assert seen_by_owner[0]["is_mine"] is False

    seen_by_author = store.list_reflections(member, suggestion["id"])
    assert seen_by_author[0]["username"] == "member"
    assert seen_by_author[0]["is_mine"] is True

    with pytest.raises(ValueError):
        store.upsert_reflection(member, suggestion["id"], rating=6, content="Too much")
    with pytest.raises(ValueError):
        store.upsert_reflection(member, suggestion["id"], rating=3, content="x" * 281)
    with pytest.raises(PermissionError):
        store.delete_reflection(owner, updated["id"])
    store.delete_reflection(member, updated["id"])
    assert store.list_reflections(member, suggestion["id"]) == []


# ---------------------------------------------------------------------------
# Recommendations and notifications
# ---------------------------------------------------------------------------
def test_recommendation_accept_and_decline(store: ShelvyStore) -> None:
    ada = _make_user(store, "ada")
    bob = _make_user(store, "bob")

    with pytest.raises(ValueError):
        store.recommend_book(ada, ada, {"title": "Dune"})
    with pytest.raises(LookupError):
        store.recommend_book(ada, "missing", {"title": "Dune"})

    first = store.recommend_book(ada, bob, {"title": "Dune", "author": "Frank Herbert"}, "  You'll love it ")
    second = store.recommend_book(ada, bob, {"title": "Emma"})
    assert first["message"] == "You'll love it"
    assert {r["from_username"] for r in store.pending_recommendations(bob)} == {"ada"}

    with pytest.raises(PermissionError):
        store.respond_to_recommendation(ada, first["id"], accept=True)

    accepted = store.respond_to_recommendation(bob, first["id"], accept=True)
    assert accepted["status"] == "accepted"
    assert accepted["book"]["status"] == "want-to-read"
    assert store.has_book(bob, "Dune", "Frank Herbert")

    declined = store.respond_to_recommendation(bob, second["id"], accept=False)
    assert declined["status"] == "declined"
    assert declined["book"] is None
    assert store.pending_recommendations(bob) == []

    with pytest.raises(ValueError):
        store.respond_to_recommendation(bob, first["id"], accept=False)


def test_notifications_count_activity_since_last_seen(store: ShelvyStore) -> None:
    ada = _make_user(store, "ada", public=True)
    bob = _make_user(store, "bob")
    book = store.add_book(ada, {"title": "Dune", "author": "Frank Herbert"})

    assert store.notification_summary(ada)["total"] == 0

    store.like_book(bob, book["id"])
    store.like_book(ada, book["id"])
    store.follow(bob, ada)
    store.recommend_book(bob, ada, {"title": "Emma"})

    summary = store.notification_summary(ada)
    assert len(summary["likes"]) == 1
    assert summary["likes"][0]["username"] == "bob"
    assert len(summary["followers"]) == 1
    assert len(summary["recommendations"]) == 1
    assert summary["total"] == 3

    store.mark_notifications_seen(ada, ["likes"])
    summary = store.notification_summary(ada)
    assert summary["likes"] == []
    assert summary["total"] == 2

    store.mark_notifications_seen(ada)
    assert store.notification_summary(ada)["total"] == 0
    with pytest.raises(ValueError):
        store.mark_notifications_seen(ada, ["comments"])


# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------
def test_delete_account_removes_owned_data(store: ShelvyStore) -> None:
    ada = _make_user(store, "ada", public=True)
    bob = _make_user(store, "bob", public=True)
    ada_book = store.add_book(ada, {"title": "Dune", "author": "Frank Herbert"})
    bob_book = store.add_book(bob, {"title": "Emma", "author": "Jane Austen"})
    store.like_book(bob, ada_book["id"])
    store.add_comment(ada, bob_book["id"], "Nice")
    store.follow(bob, ada)
    club = store.create_club(ada, "Ada's Club")
    store.join_club(bob, club["invite_code"])
    bob_club = store.create_club(bob, "Bob's Club")
    store.join_club(ada, bob_club["invite_code"])
    suggestion = store.suggest_book(ada, bob_club["id"], {"title": "Dune"})
    store.vote(bob, suggestion["id"])
    store.recommend_book(ada, bob, {"title": "Dune"})

    store.delete_account(ada)

    assert store.get_user(ada) is None
    assert store.get_profile(ada) is None
    assert store.list_books(ada) == []
    assert store.list_comments(bob, bob_book["id"]) == []
    assert store.list_following(bob) == []
    assert [c["id"] for c in store.list_clubs(bob)] == [bob_club["id"]]
    assert store.get_club(bob, bob_club["id"])["suggestions"] == []
    assert [m["username"] for m in store.get_club(bob, bob_club["id"])["members"]] == ["bob"]
    assert store.pending_recommendations(bob) == []
    with pytest.raises(LookupError):
        store.get_club(bob, club["id"])
    with pytest.raises(LookupError):
        store.delete_account(ada)
