from typing import Generator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DB_PATH
from .logging import get_logger

log = get_logger("db")


# -----------------------------------------
# SQLAlchemy Base + Engine
# -----------------------------------------
engine = create_engine(
    f"sqlite:///{DB_PATH}",
    connect_args={"check_same_thread": False},
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# -----------------------------------------
# INITIALIZE SCHEMA
# -----------------------------------------
def init_db():
    """
    Create tables if they do not exist.
    Column changes go through run_migrations().
    """
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


# -----------------------------------------
# SCHEMA VERSION TABLE
# -----------------------------------------
def get_current_version(db: Session) -> int:
    inspector = inspect(db.bind)

    if "schema_version" not in inspector.get_table_names():
        return 0

    result = db.execute(text("SELECT version FROM schema_version LIMIT 1")).fetchone()
    if not result:
        return 0

    return result[0]


def set_current_version(db: Session, version: int):
    db.execute(text("DELETE FROM schema_version"))
    db.execute(text("INSERT INTO schema_version (version) VALUES (:v)"), {"v": version})
    db.commit()


# -----------------------------------------
# AUTOMATIC MIGRATIONS
# -----------------------------------------
def run_migrations(db: Session | None = None):
    """
    Bring an existing database up to the current schema version.

    v1: seed the admin account on an empty user table.
    v2: backfill empty profile/settings columns on users created before
        profiles existed.
    """
    from .security import ensure_admin_user

    own_session = db is None
    if own_session:
        db = SessionLocal()

    try:
        version = get_current_version(db)

        if version < 1:
            log.info("[MIGRATION] Starting migration 0 -> 1")
            ensure_admin_user(db)
            set_current_version(db, 1)
            log.info("[MIGRATION] Migration 0 -> 1 complete")

        if version < 2:
            log.info("[MIGRATION] Starting migration 1 -> 2")
            columns = [c["name"] for c in inspect(db.bind).get_columns("users")]
            for name, ddl in (
                ("bio", "ALTER TABLE users ADD COLUMN bio TEXT DEFAULT ''"),
                ("profile_picture_url", "ALTER TABLE users ADD COLUMN profile_picture_url VARCHAR(500) DEFAULT ''"),
                ("settings", "ALTER TABLE users ADD COLUMN settings TEXT DEFAULT '{}'"),
            ):
                if name not in columns:
                    log.info("[MIGRATION] Adding '%s' column to users", name)
                    db.execute(text(ddl))
            db.execute(text("UPDATE users SET settings = '{}' WHERE settings IS NULL OR settings = ''"))
            set_current_version(db, 2)
            log.info("[MIGRATION] Migration 1 -> 2 complete")

        log.info("[MIGRATION] Database schema up-to-date version=%s", get_current_version(db))
    finally:
        if own_session:
            db.close()
