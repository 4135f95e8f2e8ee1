import logging
import sqlite3
from datetime import timedelta
from typing import List, Optional

from config import Settings, settings as default_settings
from booksmart.catalog import BookCatalog
from booksmart.database import to_db_time, use_connection, use_transaction
from booksmart.errors import ConflictError, ReservationNotFound
from booksmart.reservation import Reservation, ReservationState

logger = logging.getLogger(__name__)

_RESERVATION_COLUMNS = "id, reader_id, book_id, issue_date, return_date, state, extended, version"


class ReservationStore:
    """Record keeper for reservations.

    Business rules live in the eligibility engine; this class only reads and
    writes rows. Every method accepts an optional connection so that reads
    and writes can share one transaction (read-your-writes).
    """

    def __init__(self, catalog: BookCatalog, db_file: Optional[str] = None,
                 settings: Optional[Settings] = None) -> None:
        self.catalog = catalog
        self.db_file = db_file
        self.timeout = (settings or default_settings).sqlite_timeout_seconds

    def _select(self, where: str, params: tuple, conn: Optional[sqlite3.Connection]) -> List[Reservation]:
        with use_connection(self.db_file, conn, timeout=self.timeout) as c:
            rows = c.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE {where} ORDER BY issue_date DESC",
                params,
            ).fetchall()
            return [Reservation.from_row(row) for row in rows]

    def get(self, reservation_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Reservation]:
        found = self._select("id = ?", (reservation_id,), conn)
        return found[0] if found else None

    def list_open_by_reader(self, reader_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Reservation]:
        return self._select("reader_id = ? AND state != 'Closed'", (reader_id,), conn)

    def list_open_by_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Reservation]:
        return self._select("book_id = ? AND state != 'Closed'", (book_id,), conn)

    def list_by_reader(self, reader_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Reservation]:
        return self._select("reader_id = ?", (reader_id,), conn)

    def list_by_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Reservation]:
        return self._select("book_id = ?", (book_id,), conn)

    def list_open(self) -> List[Reservation]:
        return self._select("state != 'Closed'", (), None)

    def count_open_by_reader(self, reader_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
        with use_connection(self.db_file, conn, timeout=self.timeout) as c:
            return c.execute(
                "SELECT COUNT(*) FROM reservations WHERE reader_id = ? AND state != 'Closed'",
                (reader_id,),
            ).fetchone()[0]

    def exists_for(self, reader_id: str, book_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """True if the reader ever reserved the book, in any state."""
        with use_connection(self.db_file, conn, timeout=self.timeout) as c:
            row = c.execute(
                "SELECT 1 FROM reservations WHERE reader_id = ? AND book_id = ? LIMIT 1",
                (reader_id, book_id),
            ).fetchone()
            return row is not None

    # ------------------------- Writes ------------------------- #
    def insert(self, reservation: Reservation, conn: Optional[sqlite3.Connection] = None) -> None:
        with use_transaction(self.db_file, conn, timeout=self.timeout) as c:
            try:
                c.execute(
                    f"INSERT INTO reservations ({_RESERVATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        reservation.id, reservation.reader_id, reservation.book_id,
                        to_db_time(reservation.issue_date), to_db_time(reservation.return_date),
                        reservation.state.value, int(reservation.extended), reservation.version,
                    ),
                )
            except sqlite3.IntegrityError as e:
                # The open-pair unique index fired: someone else got there first
                raise ConflictError("Open reservation for this reader and book already stored") from e

    def extend(self, reservation: Reservation, extension_days: int,
               conn: Optional[sqlite3.Connection] = None) -> Reservation:
        """Push the return date and mark the reservation extended, guarded by its version."""
        new_return = reservation.return_date + timedelta(days=extension_days)
        with use_transaction(self.db_file, conn, timeout=self.timeout) as c:
            cursor = c.execute(
                """
                UPDATE reservations
                SET return_date = ?, state = ?, extended = 1, version = version + 1
                WHERE id = ? AND version = ?
                """,
                (to_db_time(new_return), ReservationState.EXTENDED.value, reservation.id, reservation.version),
            )
            if cursor.rowcount != 1:
                raise ConflictError(f"Reservation {reservation.id} changed concurrently")

        reservation.return_date = new_return
        reservation.state = ReservationState.EXTENDED
        reservation.extended = True
        reservation.version += 1
        return reservation

    def close(self, reservation_id: str, conn: Optional[sqlite3.Connection] = None) -> Reservation:
        """Mark the reservation Closed and give its copy back to the catalog, atomically."""
        with use_transaction(self.db_file, conn, timeout=self.timeout) as c:
            reservation = self.get(reservation_id, conn=c)
            if reservation is None:
                raise ReservationNotFound()
            cursor = c.execute(
                """
                UPDATE reservations SET state = ?, version = version + 1
                WHERE id = ? AND version = ? AND state != 'Closed'
                """,
                (ReservationState.CLOSED.value, reservation_id, reservation.version),
            )
            if cursor.rowcount != 1:
                raise ConflictError(f"Reservation {reservation_id} changed concurrently")
            self.catalog.return_copy(reservation.book_id, conn=c)

        reservation.state = ReservationState.CLOSED
        reservation.version += 1
        return reservation
