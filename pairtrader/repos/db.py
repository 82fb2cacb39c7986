"""SQLite schema setup and connection factory."""

import logging
import pathlib
import sqlite3

logger = logging.getLogger("pairtrader.db")

_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent.parent.parent / "db" / "migrations"


def _pending_migrations(applied: int) -> list[tuple[int, pathlib.Path]]:
    found = []
    for path in sorted(_MIGRATION_DIR.glob("*.sql")):
        version = int(path.name.split("_", 1)[0])
        if version > applied:
            found.append((version, path))
    return found


def init_db(db_path: str) -> None:
    """Apply every migration newer than the database's ``user_version``.

    Migrations are ``db/migrations/NNN_<name>.sql`` files, run in order.
    The parent directory of *db_path* is created when missing.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        applied = conn.execute("PRAGMA user_version").fetchone()[0]
        for version, path in _pending_migrations(applied):
            conn.executescript(path.read_text(encoding="utf-8"))
            conn.execute(f"PRAGMA user_version = {version}")
            logger.info("Applied migration %s", path.name)
        conn.commit()
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new connection whose rows support name access.

    Callers close it.
    """
    conn = sqlite3.connect(db_path, timeout=10.0)
    conn.row_factory = sqlite3.Row
    return conn
