import logging
import sqlite3
from typing import List, Optional

from config import Settings, settings as default_settings
from booksmart.book import Book
from booksmart.catalog import BookCatalog
from booksmart.clock import Clock, SystemClock
from booksmart.database import new_id, to_db_time, use_connection
from booksmart.errors import BookAlreadyFavorite, BookNotFound, ReaderAlreadyExists, ReaderNotFound
from booksmart.reader import Reader
from booksmart.retry import retry_on_conflict
from booksmart.validators import TextValidator

logger = logging.getLogger(__name__)


class ReaderRegistry:
    """Reader profiles (age feeds the age-limit rule) and their favorite books."""

    def __init__(self, catalog: BookCatalog, db_file: Optional[str] = None,
                 clock: Optional[Clock] = None, settings: Optional[Settings] = None) -> None:
        self.catalog = catalog
        self.db_file = db_file
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.timeout = self.settings.sqlite_timeout_seconds

    def register(self, fio: str, phone_number: str, age: int) -> Reader:
        TextValidator.validate_reader(fio, phone_number, age)
        reader = Reader(
            id=new_id(),
            fio=fio,
            phone_number=TextValidator.normalize_phone(phone_number),
            age=age,
            created_at=to_db_time(self.clock.now()),
        )
        retry_on_conflict("register_reader", lambda: self._insert(reader), self.settings.conflict_retry_attempts)
        logger.info(f"Reader registered: {reader.id}")
        return reader

    def _insert(self, reader: Reader) -> None:
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            try:
                conn.execute(
                    "INSERT INTO readers (id, fio, phone_number, age, created_at) VALUES (?, ?, ?, ?, ?)",
                    (reader.id, reader.fio, reader.phone_number, reader.age, reader.created_at),
                )
            except sqlite3.IntegrityError as e:
                raise ReaderAlreadyExists() from e

    def get(self, reader_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Reader]:
        with use_connection(self.db_file, conn, timeout=self.timeout) as c:
            row = c.execute(
                "SELECT id, fio, phone_number, age, created_at FROM readers WHERE id = ?",
                (reader_id,),
            ).fetchone()
            return Reader.from_dict(dict(row)) if row else None

    def require(self, reader_id: str, conn: Optional[sqlite3.Connection] = None) -> Reader:
        reader = self.get(reader_id, conn=conn)
        if reader is None:
            raise ReaderNotFound()
        return reader

    def count(self) -> int:
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            return conn.execute("SELECT COUNT(*) FROM readers").fetchone()[0]

    # ------------------------- Favorites ------------------------- #
    def add_favorite(self, reader_id: str, book_id: str) -> None:
        self.require(reader_id)
        if self.catalog.get(book_id) is None:
            raise BookNotFound()
        created_at = to_db_time(self.clock.now())

        def insert() -> None:
            with use_connection(self.db_file, timeout=self.timeout) as conn:
                try:
                    conn.execute(
                        "INSERT INTO favorite_books (reader_id, book_id, created_at) VALUES (?, ?, ?)",
                        (reader_id, book_id, created_at),
                    )
                except sqlite3.IntegrityError as e:
                    raise BookAlreadyFavorite() from e

        retry_on_conflict("add_favorite", insert, self.settings.conflict_retry_attempts)

    def list_favorites(self, reader_id: str) -> List[Book]:
        self.require(reader_id)
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            rows = conn.execute(
                """
                SELECT b.id FROM favorite_books f JOIN books b ON b.id = f.book_id
                WHERE f.reader_id = ? ORDER BY f.created_at, b.title
                """,
                (reader_id,),
            ).fetchall()
            return [book for book in (self.catalog.get(row["id"], conn=conn) for row in rows) if book]
