import logging
import sqlite3
from typing import List, Optional

from config import Settings, settings as default_settings
from booksmart.clock import Clock, SystemClock
from booksmart.database import new_id, to_db_time, use_transaction, use_connection
from booksmart.errors import DuplicateRating, NeverBorrowed, NoRatings
from booksmart.rating import Rating
from booksmart.reservation_store import ReservationStore
from booksmart.retry import retry_on_conflict
from booksmart.validators import LendingValidator, TextValidator

logger = logging.getLogger(__name__)


class RatingLedger:
    """One rating per (reader, book), only for books the reader has reserved."""

    def __init__(self, reservations: ReservationStore, db_file: Optional[str] = None,
                 clock: Optional[Clock] = None, settings: Optional[Settings] = None) -> None:
        self.reservations = reservations
        self.db_file = db_file
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.timeout = self.settings.sqlite_timeout_seconds

    def add_rating(self, reader_id: str, book_id: str, score: int, review: str = "") -> Rating:
        LendingValidator.validate_score(score)
        rating = Rating(
            id=new_id(),
            reader_id=reader_id,
            book_id=book_id,
            score=score,
            review=TextValidator.sanitize_text(review),
            created_at=to_db_time(self.clock.now()),
        )

        retry_on_conflict("add_rating", lambda: self._insert(rating), self.settings.conflict_retry_attempts)
        logger.info(f"Rating {score} recorded for book {book_id} by reader {reader_id}")
        return rating

    def _insert(self, rating: Rating) -> None:
        reader_id, book_id = rating.reader_id, rating.book_id
        with use_transaction(self.db_file, timeout=self.timeout) as conn:
            if not self.reservations.exists_for(reader_id, book_id, conn=conn):
                raise NeverBorrowed()
            if self._exists(reader_id, book_id, conn):
                raise DuplicateRating()
            try:
                conn.execute(
                    """
                    INSERT INTO ratings (id, reader_id, book_id, review, score, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (rating.id, rating.reader_id, rating.book_id, rating.review,
                     rating.score, rating.created_at),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateRating() from e

    def _exists(self, reader_id: str, book_id: str, conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM ratings WHERE reader_id = ? AND book_id = ?", (reader_id, book_id)
        ).fetchone()
        return row is not None

    def list_by_book(self, book_id: str) -> List[Rating]:
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            rows = conn.execute(
                """
                SELECT id, reader_id, book_id, review, score, created_at
                FROM ratings WHERE book_id = ? ORDER BY created_at DESC
                """,
                (book_id,),
            ).fetchall()
            return [Rating.from_dict(dict(row)) for row in rows]

    def average_score(self, book_id: str) -> float:
        """Arithmetic mean of all scores for the book; ``NoRatings`` when there are none."""
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            row = conn.execute(
                "SELECT AVG(score) AS avg_score, COUNT(*) AS rating_count FROM ratings WHERE book_id = ?",
                (book_id,),
            ).fetchone()
        if not row["rating_count"]:
            raise NoRatings()
        return float(row["avg_score"])
