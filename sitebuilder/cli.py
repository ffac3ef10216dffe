import argparse
from datetime import datetime, timezone
from getpass import getpass

import uvicorn

from sitebuilder.core.db import SessionLocal, init_db, run_migrations
from sitebuilder.core.editor import export_project_source
from sitebuilder.core.errors import SiteBuilderError
from sitebuilder.core.repository import get_project, list_projects
from sitebuilder.core.security import deactivate_user, find_user_by_login, list_users, register_user


def _fmt_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sitebuilder", description="Site builder administration")
    parser.add_argument(
        "cmd",
        choices=["init", "create-user", "users", "projects", "export", "deactivate", "serve"],
    )
    parser.add_argument("--username", help="Username or email of the account to act on")
    parser.add_argument("--email", help="Email for create-user")
    parser.add_argument("--admin", action="store_true", help="Create the user as administrator")
    parser.add_argument("--id", help="Project ID for export")
    parser.add_argument("--out", help="Write exported source to this file instead of stdout")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # -----------------------------------------
    # SERVE (the app initializes the database itself)
    # -----------------------------------------
    if args.cmd == "serve":
        uvicorn.run("sitebuilder.web:app", host=args.host, port=args.port)
        return 0

    init_db()
    db = SessionLocal()
    try:
        return _dispatch(args, db)
    except SiteBuilderError as e:
        print("Error:", e.message)
        return 1
    finally:
        db.close()


def _require_user(db, login: str | None):
    if not login:
        raise SystemExit("Please specify --username <username or email>")
    user = find_user_by_login(db, login)
    if not user:
        raise SystemExit(f"No such user: {login}")
    return user


def _dispatch(args, db) -> int:
    # -----------------------------------------
    # INIT (schema + admin account)
    # -----------------------------------------
    if args.cmd == "init":
        run_migrations(db)
        print("Database initialized.")

    # -----------------------------------------
    # CREATE USER
    # -----------------------------------------
    elif args.cmd == "create-user":
        if not args.username or not args.email:
            print("Please specify --username and --email")
            return 1
        pw = getpass("Password: ")
        if pw != getpass("Repeat password: "):
            print("Passwords do not match.")
            return 1
        u = register_user(db, args.username, args.email, pw, is_admin=args.admin)
        print(f"User '{u.username}' created with ID {u.id}")

    # -----------------------------------------
    # LIST USERS
    # -----------------------------------------
    elif args.cmd == "users":
        users = list_users(db)
        if not users:
            print("No users.")
            return 0
        print(f"{'ID':<38}{'Username':<20}{'Email':<30}{'Flags':<14}{'Last login'}")
        print("-" * 118)
        for u in users:
            flags = ",".join(f for f, on in (("admin", u.is_admin), ("inactive", not u.is_active)) if on)
            print(f"{u.id:<38}{u.username:<20}{u.email:<30}{flags:<14}{_fmt_ms(u.last_login)}")

    # -----------------------------------------
    # LIST PROJECTS OF A USER
    # -----------------------------------------
    elif args.cmd == "projects":
        user = _require_user(db, args.username)
        projects = list_projects(db, user.id)
        if not projects:
            print("No projects.")
            return 0
        for p in projects:
            visibility = "public" if p.is_public else "private"
            print(f"{p.id}: {p.name} ({visibility}, updated {_fmt_ms(p.updated_at)})")

    # -----------------------------------------
    # EXPORT PROJECT AS REACT SOURCE
    # -----------------------------------------
    elif args.cmd == "export":
        if not args.id:
            print("Please specify --id <project_id>")
            return 1
        user = _require_user(db, args.username) if args.username else None
        project = get_project(db, args.id, user.id if user else None)
        source = export_project_source(project)
        if args.out:
            with open(args.out, "w", encoding="utf-8") as f:
                f.write(source + "\n")
            print(f"Wrote {args.out}")
        else:
            print(source)

    # -----------------------------------------
    # DEACTIVATE
    # -----------------------------------------
    elif args.cmd == "deactivate":
        user = _require_user(db, args.username)
        deactivate_user(db, user.id)
        print(f"User '{user.username}' deactivated.")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
