import logging
import sqlite3
from typing import List, Optional

from booksmart.book import Book, Rarity
from booksmart.clock import Clock, SystemClock
from booksmart.database import new_id, to_db_time, use_connection, use_transaction
from booksmart.errors import BookHasOpenReservations, BookNotFound, ConflictError, InvalidBook
from booksmart.retry import retry_on_conflict
from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = """
    id, title, author, publisher, genre, publishing_year, language,
    copies_total, copies_available, rarity, age_limit, created_at
"""


class BookCatalog:
    """Owns Book records and their copy counters."""

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Clock] = None,
                 settings: Optional[Settings] = None) -> None:
        self.db_file = db_file
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.timeout = self.settings.sqlite_timeout_seconds

    # ------------------------- Administration ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Insert a new book. ``copies_available`` starts equal to ``copies_total``."""
        if not book.id:
            book.id = new_id()
        book.copies_available = book.copies_total
        book.validate()
        book.created_at = to_db_time(self.clock.now())

        retry_on_conflict("add_book", lambda: self._insert(book), self.settings.conflict_retry_attempts)
        logger.info(f"Book added: {book.id} ({book.title}, {book.copies_total} copies, {book.rarity.value})")
        return book

    def _insert(self, book: Book) -> None:
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            try:
                conn.execute(f"""
                    INSERT INTO books ({_BOOK_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    book.id, book.title, book.author, book.publisher, book.genre,
                    book.publishing_year, book.language, book.copies_total,
                    book.copies_available, book.rarity.value, book.age_limit, book.created_at,
                ))
            except sqlite3.IntegrityError as e:
                raise InvalidBook(f"Book with id {book.id} already exists.") from e

    def delete_book(self, book_id: str) -> None:
        retry_on_conflict("delete_book", lambda: self._delete(book_id), self.settings.conflict_retry_attempts)
        logger.info(f"Book removed: {book_id}")

    def _delete(self, book_id: str) -> None:
        with use_transaction(self.db_file, timeout=self.timeout) as conn:
            if self.get(book_id, conn=conn) is None:
                raise BookNotFound()
            open_count = conn.execute(
                "SELECT COUNT(*) FROM reservations WHERE book_id = ? AND state != 'Closed'",
                (book_id,),
            ).fetchone()[0]
            if open_count:
                raise BookHasOpenReservations()
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))

    # ------------------------- Reads ------------------------- #
    def get(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        with use_connection(self.db_file, conn, timeout=self.timeout) as c:
            row = c.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None

    def list_books(self) -> List[Book]:
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            rows = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY title").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]

    def search(self, *, title: Optional[str] = None, author: Optional[str] = None,
               publisher: Optional[str] = None, genre: Optional[str] = None,
               language: Optional[str] = None, rarity: Optional[str] = None,
               max_age_limit: Optional[int] = None) -> List[Book]:
        """Filter books; text fields match by substring, the rest by equality."""
        clauses: List[str] = []
        params: list = []
        for column, value in (("title", title), ("author", author),
                              ("publisher", publisher), ("genre", genre)):
            if value:
                clauses.append(f"{column} LIKE ?")
                params.append(f"%{value.strip()}%")
        if language:
            clauses.append("language = ?")
            params.append(language)
        if rarity:
            clauses.append("rarity = ?")
            params.append(Rarity(rarity).value)
        if max_age_limit is not None:
            clauses.append("age_limit <= ?")
            params.append(max_age_limit)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            rows = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books {where} ORDER BY title", params
            ).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]

    # ------------------------- Copy counters ------------------------- #
    def take_copy(self, book_id: str, expected_available: int, conn: sqlite3.Connection) -> None:
        """Decrement ``copies_available`` if it still equals the value the caller read."""
        cursor = conn.execute(
            """
            UPDATE books SET copies_available = copies_available - 1
            WHERE id = ? AND copies_available = ? AND copies_available > 0
            """,
            (book_id, expected_available),
        )
        if cursor.rowcount != 1:
            raise ConflictError(f"Copy counter of book {book_id} changed concurrently")

    def return_copy(self, book_id: str, conn: sqlite3.Connection) -> None:
        cursor = conn.execute(
            """
            UPDATE books SET copies_available = copies_available + 1
            WHERE id = ? AND copies_available < copies_total
            """,
            (book_id,),
        )
        if cursor.rowcount != 1:
            raise ConflictError(f"Copy counter of book {book_id} is already full")
