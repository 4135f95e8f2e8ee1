"""Reservation eligibility engine.

Decides whether a reservation may be created, extended or closed. The engine
keeps no state of its own: each call reads a snapshot from the stores,
evaluates an ordered list of predicates (first failure wins) and, when all
pass, applies one coordinated write. If the write detects a concurrent
change, the whole evaluation is re-run from a fresh snapshot.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from config import Settings, settings as default_settings
from booksmart.book import Rarity
from booksmart.card_registry import LibCardRegistry
from booksmart.catalog import BookCatalog
from booksmart.clock import Clock, SystemClock
from booksmart.database import new_id, snapshot, transaction
from booksmart.errors import (
    AgeRestricted,
    AlreadyExtended,
    BookNotFound,
    BusinessRuleError,
    ConflictError,
    DuplicateReservation,
    LibCardInvalid,
    LibCardMissing,
    NoCopiesAvailable,
    RareBookNotExtendable,
    ReaderHasOverdueBook,
    ReservationClosed,
    ReservationExpired,
    ReservationLimitExceeded,
    ReservationNotFound,
    UniqueBookUnavailable,
    Unavailable,
)
from booksmart.locks import KeyedLock
from booksmart.reader_registry import ReaderRegistry
from booksmart.reservation import Reservation, ReservationState
from booksmart.reservation_store import ReservationStore
from booksmart.retry import retry_on_conflict
from booksmart.validators import LendingValidator

logger = logging.getLogger(__name__)


def _reader_key(reader_id: str) -> str:
    return f"reader:{reader_id}"


def _book_key(book_id: str) -> str:
    return f"book:{book_id}"


class EligibilityEngine:
    def __init__(self, readers: ReaderRegistry, catalog: BookCatalog, cards: LibCardRegistry,
                 reservations: ReservationStore, db_file: Optional[str] = None,
                 clock: Optional[Clock] = None, settings: Optional[Settings] = None,
                 locks: Optional[KeyedLock] = None) -> None:
        self.readers = readers
        self.catalog = catalog
        self.cards = cards
        self.reservations = reservations
        self.db_file = db_file
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.timeout = self.settings.sqlite_timeout_seconds
        self.locks = locks or KeyedLock(timeout=self.settings.lock_timeout_seconds)

    # ------------------------- Public operations ------------------------- #
    def create_reservation(self, reader_id: str, book_id: str,
                           deadline: Optional[datetime] = None) -> Reservation:
        with self.locks.hold(_reader_key(reader_id), _book_key(book_id)):
            return retry_on_conflict("create", lambda: self._try_create(reader_id, book_id, deadline),
                                     self.settings.conflict_retry_attempts)

    def extend_reservation(self, reservation_id: str, extension_days: int,
                           deadline: Optional[datetime] = None) -> Reservation:
        LendingValidator.validate_extension_days(extension_days, self.settings.max_extension_days)
        current = self.reservations.get(reservation_id)
        if current is None:
            return self._deny("extend", reservation_id, ReservationNotFound())

        with self.locks.hold(_reader_key(current.reader_id)):
            return retry_on_conflict("extend", lambda: self._try_extend(reservation_id, extension_days, deadline),
                                     self.settings.conflict_retry_attempts)

    def close_reservation(self, reservation_id: str,
                          deadline: Optional[datetime] = None) -> Reservation:
        current = self.reservations.get(reservation_id)
        if current is None:
            return self._deny("close", reservation_id, ReservationNotFound())

        with self.locks.hold(_book_key(current.book_id)):
            return retry_on_conflict("close", lambda: self._try_close(reservation_id, deadline),
                                     self.settings.conflict_retry_attempts)

    # ------------------------- Evaluation ------------------------- #
    def _try_create(self, reader_id: str, book_id: str, deadline: Optional[datetime]) -> Reservation:
        now = self.clock.now()
        subject = f"reader {reader_id}, book {book_id}"

        with snapshot(self.db_file, self.timeout) as conn:
            reader = self.readers.require(reader_id, conn=conn)
            open_reservations = self.reservations.list_open_by_reader(reader_id, conn=conn)
            card = self.cards.get_by_reader(reader_id, conn=conn)
            book = self.catalog.get(book_id, conn=conn)
            book_is_held = bool(self.reservations.list_open_by_book(book_id, conn=conn))

        if any(r.is_overdue(now) for r in open_reservations):
            return self._deny("create", subject, ReaderHasOverdueBook())
        if len(open_reservations) >= self.settings.reservation_limit:
            return self._deny("create", subject, ReservationLimitExceeded())
        if card is None:
            return self._deny("create", subject, LibCardMissing())
        if not card.is_valid(now):
            return self._deny("create", subject, LibCardInvalid())
        if book is None:
            return self._deny("create", subject, BookNotFound())
        unique_held = book.rarity is Rarity.UNIQUE and book_is_held
        # A held unique copy is reported by its own rule, not by the counter
        if book.copies_available <= 0 and not unique_held:
            return self._deny("create", subject, NoCopiesAvailable())
        if unique_held:
            return self._deny("create", subject, UniqueBookUnavailable())
        if reader.age < book.age_limit:
            return self._deny("create", subject, AgeRestricted())
        if any(r.book_id == book_id for r in open_reservations):
            return self._deny("create", subject, DuplicateReservation())

        reservation = Reservation(
            id=new_id(),
            reader_id=reader_id,
            book_id=book_id,
            issue_date=now,
            return_date=now + timedelta(days=self.settings.loan_period_days),
            state=ReservationState.ISSUED,
        )

        self._check_deadline(deadline)
        with transaction(self.db_file, self.timeout) as conn:
            if self.reservations.count_open_by_reader(reader_id, conn=conn) != len(open_reservations):
                raise ConflictError(f"Open reservations of reader {reader_id} changed concurrently")
            self.catalog.take_copy(book_id, book.copies_available, conn=conn)
            self.reservations.insert(reservation, conn=conn)

        logger.info(f"Reservation {reservation.id} issued: {subject}, due {reservation.return_date.isoformat()}")
        return reservation

    def _try_extend(self, reservation_id: str, extension_days: int,
                    deadline: Optional[datetime]) -> Reservation:
        now = self.clock.now()

        with snapshot(self.db_file, self.timeout) as conn:
            reservation = self.reservations.get(reservation_id, conn=conn)
            if reservation is None:
                return self._deny("extend", reservation_id, ReservationNotFound())
            card = self.cards.get_by_reader(reservation.reader_id, conn=conn)
            others = [
                r for r in self.reservations.list_open_by_reader(reservation.reader_id, conn=conn)
                if r.id != reservation.id
            ]
            book = self.catalog.get(reservation.book_id, conn=conn)

        if reservation.state is ReservationState.CLOSED:
            return self._deny("extend", reservation_id, ReservationClosed())
        if now > reservation.return_date:
            return self._deny("extend", reservation_id, ReservationExpired())
        if reservation.extended:
            return self._deny("extend", reservation_id, AlreadyExtended())
        if card is None or not card.is_valid(now):
            return self._deny("extend", reservation_id, LibCardInvalid())
        if any(r.is_overdue(now) for r in others):
            return self._deny("extend", reservation_id, ReaderHasOverdueBook())
        if book is None:
            return self._deny("extend", reservation_id, BookNotFound())
        if book.is_scarce:
            return self._deny("extend", reservation_id, RareBookNotExtendable())

        self._check_deadline(deadline)
        with transaction(self.db_file, self.timeout) as conn:
            self.reservations.extend(reservation, extension_days, conn=conn)

        logger.info(
            f"Reservation {reservation_id} extended by {extension_days} days, "
            f"due {reservation.return_date.isoformat()}"
        )
        return reservation

    def _try_close(self, reservation_id: str, deadline: Optional[datetime]) -> Reservation:
        reservation = self.reservations.get(reservation_id)
        if reservation is None:
            return self._deny("close", reservation_id, ReservationNotFound())
        if reservation.state is ReservationState.CLOSED:
            return self._deny("close", reservation_id, ReservationClosed())

        self._check_deadline(deadline)
        with transaction(self.db_file, self.timeout) as conn:
            closed = self.reservations.close(reservation_id, conn=conn)

        logger.info(f"Reservation {reservation_id} closed, copy of book {closed.book_id} returned")
        return closed

    # ------------------------- Helpers ------------------------- #
    def _check_deadline(self, deadline: Optional[datetime]) -> None:
        if deadline is not None and self.clock.now() > deadline:
            raise Unavailable("Request deadline exceeded before the write was applied.")

    @staticmethod
    def _deny(operation: str, subject: str, error: BusinessRuleError):
        logger.info(f"{operation} denied for {subject}: {error.code}")
        raise error
