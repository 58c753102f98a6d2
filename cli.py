import argparse
import json
from pathlib import Path

from exam_engine.database import SessionLocal, init_db
from exam_engine.logging_setup import setup_console_logging
from exam_engine.services.auth_service import create_access_token, create_user
from exam_engine.services.catalog_service import import_catalog
from exam_engine.services.expiry_service import run_expiry_sweep

setup_console_logging()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Exam engine administration")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")

    catalog = commands.add_parser("import-catalog", help="Import questions from a JSON file")
    catalog.add_argument("file", type=Path, help="Path to catalog JSON")

    user = commands.add_parser("create-user", help="Create a user")
    user.add_argument("username")
    user.add_argument("email")
    user.add_argument("--coins", type=int, default=0, help="Starting coin balance")

    token = commands.add_parser("issue-token", help="Issue a bearer token for a user")
    token.add_argument("user_id", type=int)
    token.add_argument("--minutes", type=int, default=None, help="Token lifetime")

    commands.add_parser("sweep", help="Run one expiry sweep")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    init_db()

    if args.command == "init-db":
        print("Database ready")
        return

    if args.command == "sweep":
        print(json.dumps(run_expiry_sweep()))
        return

    if args.command == "issue-token":
        print(create_access_token(args.user_id, args.minutes))
        return

    db = SessionLocal()
    try:
        if args.command == "import-catalog":
            payload = json.loads(args.file.read_text(encoding="utf-8"))
            atomic, comprehensive = import_catalog(db, payload)
            print(f"Imported {atomic} questions and {comprehensive} comprehensive passages")
        elif args.command == "create-user":
            user = create_user(db, args.username, args.email, coins=args.coins)
            print(f"Created user {user.id} ({user.username})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
