from __future__ import annotations

from datetime import datetime
from enum import Enum

from booksmart.database import from_db_time, to_db_time


class ReservationState(str, Enum):
    ISSUED = "Issued"
    EXTENDED = "Extended"
    CLOSED = "Closed"
    # Never stored: derived from return_date on read.
    EXPIRED = "Expired"


OPEN_STATES = (ReservationState.ISSUED, ReservationState.EXTENDED)


class Reservation:
    """A reader's hold on one copy of a book."""

    def __init__(self, id: str, reader_id: str, book_id: str, issue_date: datetime,
                 return_date: datetime, state: ReservationState | str = ReservationState.ISSUED,
                 extended: bool = False, version: int = 0) -> None:
        self.id = id
        self.reader_id = reader_id
        self.book_id = book_id
        self.issue_date = issue_date
        self.return_date = return_date
        self.state = ReservationState(state)
        self.extended = extended
        self.version = version

    @property
    def is_open(self) -> bool:
        return self.state in OPEN_STATES

    def is_overdue(self, now: datetime) -> bool:
        """An open reservation whose return date has passed."""
        return self.is_open and now > self.return_date

    def effective_state(self, now: datetime) -> ReservationState:
        """Stored state, with Expired derived for open loans past their return date."""
        if self.is_overdue(now):
            return ReservationState.EXPIRED
        return self.state

    def to_dict(self, now: datetime | None = None) -> dict:
        state = self.effective_state(now) if now is not None else self.state
        return {
            "id": self.id,
            "reader_id": self.reader_id,
            "book_id": self.book_id,
            "issue_date": to_db_time(self.issue_date),
            "return_date": to_db_time(self.return_date),
            "state": state.value,
            "extended": self.extended,
        }

    @staticmethod
    def from_row(row) -> "Reservation":
        return Reservation(
            id=row["id"],
            reader_id=row["reader_id"],
            book_id=row["book_id"],
            issue_date=from_db_time(row["issue_date"]),
            return_date=from_db_time(row["return_date"]),
            state=row["state"],
            extended=bool(row["extended"]),
            version=row["version"],
        )
