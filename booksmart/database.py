import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

from config import settings
from booksmart.errors import ConflictError, StorageError

# Make sure .env is loaded before the default database path is resolved.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file. Callers (tests, the Library facade) pass an explicit
# path; this is only used when none is given.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.data_file


def _is_busy(exc: sqlite3.Error) -> bool:
    message = str(exc).lower()
    return isinstance(exc, sqlite3.OperationalError) and ("locked" in message or "busy" in message)


def _translate(exc: sqlite3.Error) -> Exception:
    """Busy database -> ``ConflictError`` (retryable); anything else -> ``StorageError``."""
    if _is_busy(exc):
        return ConflictError("Database is busy")
    logger.error(f"Database error: {exc}")
    return StorageError(str(exc))


def get_db_connection(db_file: Optional[str] = None, timeout: Optional[float] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database in autocommit mode.

    Multi-statement writes go through ``transaction()``, which issues
    ``BEGIN IMMEDIATE`` explicitly. ``timeout`` is how long a statement waits
    for another writer's lock; it defaults to the configured value.
    """
    try:
        conn = sqlite3.connect(
            db_file or DATABASE_FILE,
            timeout=settings.sqlite_timeout_seconds if timeout is None else timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.Error as exc:
        logger.error(f"Could not open database {db_file or DATABASE_FILE}: {exc}")
        raise StorageError(f"Could not open database: {exc}") from exc
    return conn


@contextmanager
def connection(db_file: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """Yield a short-lived connection for reads and single-statement writes."""
    conn = get_db_connection(db_file, timeout)
    try:
        yield conn
    except sqlite3.Error as exc:
        raise _translate(exc) from exc
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """Run the body as one atomic unit; roll everything back on any failure.

    A busy database (another writer holding the lock past the timeout) is
    reported as ``ConflictError`` so the caller can retry the evaluation.
    """
    conn = get_db_connection(db_file, timeout)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
    except sqlite3.Error as exc:
        raise _translate(exc) from exc
    finally:
        conn.close()


@contextmanager
def snapshot(db_file: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """Read-only unit: every read in the body sees the same database state."""
    conn = get_db_connection(db_file, timeout)
    try:
        conn.execute("BEGIN")
        try:
            yield conn
        finally:
            conn.execute("ROLLBACK")
    except sqlite3.Error as exc:
        raise _translate(exc) from exc
    finally:
        conn.close()


@contextmanager
def use_connection(db_file: Optional[str], conn: Optional[sqlite3.Connection] = None,
                   timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """Reuse the caller's connection when given, otherwise open a short-lived one."""
    if conn is not None:
        yield conn
        return
    with connection(db_file, timeout) as own:
        yield own


@contextmanager
def use_transaction(db_file: Optional[str], conn: Optional[sqlite3.Connection] = None,
                    timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
    """Join the caller's transaction when given, otherwise run a new one."""
    if conn is not None:
        yield conn
        return
    with transaction(db_file, timeout) as own:
        yield own


def new_id() -> str:
    return str(uuid.uuid4())


def to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def create_tables(db_file: Optional[str] = None, timeout: Optional[float] = None) -> None:
    """Create the required tables if they do not exist yet."""
    with connection(db_file, timeout) as conn:
        # Persistent per database file
        conn.execute("PRAGMA journal_mode=WAL;")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS readers (
                id TEXT PRIMARY KEY,
                fio TEXT NOT NULL,
                phone_number TEXT UNIQUE NOT NULL,
                age INTEGER NOT NULL CHECK(age >= 0),
                created_at TEXT NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                publisher TEXT,
                genre TEXT,
                publishing_year INTEGER,
                language TEXT,
                copies_total INTEGER NOT NULL CHECK(copies_total >= 0),
                copies_available INTEGER NOT NULL
                    CHECK(copies_available >= 0 AND copies_available <= copies_total),
                rarity TEXT NOT NULL CHECK(rarity IN ('common', 'rare', 'unique')),
                age_limit INTEGER NOT NULL DEFAULT 0 CHECK(age_limit >= 0),
                created_at TEXT NOT NULL,
                CHECK(rarity != 'unique' OR copies_total = 1)
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS lib_cards (
                id TEXT PRIMARY KEY,
                reader_id TEXT UNIQUE NOT NULL,
                lib_card_num TEXT UNIQUE NOT NULL,
                issue_date TEXT NOT NULL,
                validity_days INTEGER NOT NULL CHECK(validity_days > 0),
                active INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (reader_id) REFERENCES readers(id) ON DELETE CASCADE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                id TEXT PRIMARY KEY,
                reader_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                issue_date TEXT NOT NULL,
                return_date TEXT NOT NULL,
                state TEXT NOT NULL CHECK(state IN ('Issued', 'Extended', 'Closed')),
                extended INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (reader_id) REFERENCES readers(id) ON DELETE CASCADE,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS ratings (
                id TEXT PRIMARY KEY,
                reader_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                review TEXT NOT NULL DEFAULT '',
                score INTEGER NOT NULL CHECK(score >= 0 AND score <= 5),
                created_at TEXT NOT NULL,
                UNIQUE (reader_id, book_id),
                FOREIGN KEY (reader_id) REFERENCES readers(id) ON DELETE CASCADE,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS favorite_books (
                reader_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (reader_id, book_id),
                FOREIGN KEY (reader_id) REFERENCES readers(id) ON DELETE CASCADE,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
            )
        """)

        # At most one open reservation per (reader, book) pair
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_reservations_open_pair
            ON reservations(reader_id, book_id) WHERE state != 'Closed'
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_reservations_reader ON reservations(reader_id, state)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_reservations_book ON reservations(book_id, state)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_ratings_book ON ratings(book_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")


def initialize_database(db_file: Optional[str] = None, timeout: Optional[float] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file, timeout)
    logger.debug(f"Database ready at {db_file or DATABASE_FILE}")
