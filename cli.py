import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from backfill import backfill_all_metadata, isbndb_backfill
from catalog import search_books, volume_to_book
from config import ConfigurationError, configure_logging
from goodreads import read_goodreads_export
from store import ShelvyStore, get_store


def print_report(report: Dict[str, Any]) -> None:
    """Pretty-print a maintenance report."""
    print(json.dumps(report, indent=2, ensure_ascii=False, sort_keys=True))


def print_book_preview(book: Dict[str, Any], index: Optional[int] = None) -> None:
    prefix = f"{index:>3}. " if index is not None else "   "
    extras = []
    if book.get("isbn"):
        extras.append(f"ISBN {book['isbn']}")
    if book.get("page_count"):
        extras.append(f"{book['page_count']} pages")
    suffix = f" ({', '.join(extras)})" if extras else ""
    print(f"{prefix}{book['title']} by {book['author']} [{book.get('status', '')}]{suffix}")


def _require_user(store: ShelvyStore, email: str) -> Dict[str, Any]:
    user = store.get_user_credentials(email)
    if user is None:
        raise SystemExit(f"No account found for {email}")
    return user


def import_goodreads(store: ShelvyStore, email: str, csv_path: str, assume_yes: bool = False) -> int:
    user = _require_user(store, email)
    books = read_goodreads_export(csv_path)
    if not books:
        print("No books found in that export.")
        return 0

    print(f"\nFound {len(books)} books:\n")
    for index, book in enumerate(books[:20], start=1):
        print_book_preview(book, index)
    if len(books) > 20:
        print(f"   ... and {len(books) - 20} more")

    if not assume_yes:
        confirm = input(f"\nImport these into {email}'s shelf? (y/n): ").strip().lower()
        if confirm not in {"y", "yes"}:
            print("Import cancelled.")
            return 0

    imported = 0
    skipped = 0
    for book in books:
        if store.has_book(user["id"], book["title"], book["author"]):
            skipped += 1
            continue
        store.add_book(user["id"], book)
        imported += 1
    print(f"\nImported {imported} books, skipped {skipped} already on the shelf.")
    return imported


def run_search(query: str) -> List[Dict[str, Any]]:
    result = search_books(query)
    items = result["items"]
    if not items:
        print("No books matched your search.")
        return []
    print(f"Source: {result['source']}\n")
    books = [volume_to_book(item) for item in items]
    for index, book in enumerate(books, start=1):
        cover = "cover" if book.get("cover_url") else "no cover"
        print(f"{index:>3}. {book['title']} by {book['author']} ({cover})")
    return books


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shelvy", description="Shelvy operator tools")
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    commands = parser.add_subparsers(dest="command", required=True)

    importer = commands.add_parser("import-goodreads", help="Import a Goodreads CSV export")
    importer.add_argument("--email", required=True)
    importer.add_argument("--csv", required=True, dest="csv_path")
    importer.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    backfill = commands.add_parser("backfill", help="Fill missing metadata across all shelves")
    backfill.add_argument("--batch-size", type=int, default=20)

    isbndb = commands.add_parser("isbndb-backfill", help="Fill missing metadata from ISBNdb")
    isbndb.add_argument("--batch-size", type=int, default=100)

    admin = commands.add_parser("grant-admin", help="Give a user the admin role")
    admin.add_argument("--email", required=True)

    search = commands.add_parser("search", help="Search Open Library and Google Books")
    search.add_argument("query", nargs="+")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "search":
        run_search(" ".join(args.query))
        return 0

    store = get_store()
    try:
        if args.command == "import-goodreads":
            import_goodreads(store, args.email, args.csv_path, assume_yes=args.yes)
        elif args.command == "backfill":
            print_report(backfill_all_metadata(store, args.batch_size).to_dict())
        elif args.command == "isbndb-backfill":
            try:
                print_report(isbndb_backfill(store, args.batch_size).to_dict())
            except ConfigurationError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                return 1
        elif args.command == "grant-admin":
            user = _require_user(store, args.email)
            store.grant_role(user["id"], "admin")
            print(f"{args.email} is now an admin.")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
