from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import Settings, settings as default_settings
from booksmart import database
from booksmart.book import Book, Rarity
from booksmart.card_registry import LibCardRegistry
from booksmart.catalog import BookCatalog
from booksmart.clock import Clock, SystemClock
from booksmart.database import initialize_database
from booksmart.errors import BookNotFound, ReservationNotFound
from booksmart.lib_card import LibCard
from booksmart.rating import Rating
from booksmart.rating_ledger import RatingLedger
from booksmart.reader import Reader
from booksmart.reader_registry import ReaderRegistry
from booksmart.reservation import Reservation
from booksmart.reservation_store import ReservationStore
from booksmart.services.eligibility_engine import EligibilityEngine

logger = logging.getLogger(__name__)


class Library:
    """Wires the stores and the eligibility engine over one SQLite database."""

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Clock] = None,
                 settings: Optional[Settings] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings

        # Make sure the schema is current on every start
        initialize_database(self.db_file, self.settings.sqlite_timeout_seconds)

        self.catalog = BookCatalog(self.db_file, self.clock, self.settings)
        self.readers = ReaderRegistry(self.catalog, self.db_file, self.clock, self.settings)
        self.cards = LibCardRegistry(self.readers, self.db_file, self.clock, self.settings)
        self.reservations = ReservationStore(self.catalog, self.db_file, self.settings)
        self.ratings = RatingLedger(self.reservations, self.db_file, self.clock, self.settings)
        self.engine = EligibilityEngine(
            self.readers, self.catalog, self.cards, self.reservations,
            db_file=self.db_file, clock=self.clock, settings=self.settings,
        )

    def now(self) -> datetime:
        return self.clock.now()

    # ------------------------- Readers ------------------------- #
    def register_reader(self, fio: str, phone_number: str, age: int) -> Reader:
        return self.readers.register(fio, phone_number, age)

    def get_reader(self, reader_id: str) -> Reader:
        return self.readers.require(reader_id)

    def add_favorite(self, reader_id: str, book_id: str) -> None:
        self.readers.add_favorite(reader_id, book_id)

    def list_favorites(self, reader_id: str) -> List[Book]:
        return self.readers.list_favorites(reader_id)

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: str, author: str, copies_total: int,
                 rarity: Rarity | str = Rarity.COMMON, age_limit: int = 0, **details: Any) -> Book:
        book = Book(id="", title=title, author=author, copies_total=copies_total,
                    rarity=rarity, age_limit=age_limit, **details)
        return self.catalog.add_book(book)

    def get_book(self, book_id: str) -> Book:
        book = self.catalog.get(book_id)
        if book is None:
            raise BookNotFound()
        return book

    def list_books(self) -> List[Book]:
        return self.catalog.list_books()

    def search_books(self, **filters: Any) -> List[Book]:
        return self.catalog.search(**filters)

    def delete_book(self, book_id: str) -> None:
        self.catalog.delete_book(book_id)

    # ------------------------- Library cards ------------------------- #
    def create_lib_card(self, reader_id: str) -> LibCard:
        return self.cards.create(reader_id)

    def get_lib_card(self, reader_id: str) -> LibCard:
        return self.cards.require(reader_id)

    def renew_lib_card(self, reader_id: str) -> LibCard:
        return self.cards.renew(reader_id)

    def deactivate_lib_card(self, reader_id: str) -> LibCard:
        return self.cards.deactivate(reader_id)

    # ------------------------- Reservations ------------------------- #
    def reserve_book(self, reader_id: str, book_id: str,
                     deadline: Optional[datetime] = None) -> Reservation:
        return self.engine.create_reservation(reader_id, book_id, deadline=deadline)

    def extend_reservation(self, reservation_id: str, extension_days: int,
                           deadline: Optional[datetime] = None) -> Reservation:
        return self.engine.extend_reservation(reservation_id, extension_days, deadline=deadline)

    def close_reservation(self, reservation_id: str,
                          deadline: Optional[datetime] = None) -> Reservation:
        return self.engine.close_reservation(reservation_id, deadline=deadline)

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.reservations.get(reservation_id)
        if reservation is None:
            raise ReservationNotFound()
        return reservation

    def list_reader_reservations(self, reader_id: str) -> List[Reservation]:
        self.readers.require(reader_id)
        return self.reservations.list_by_reader(reader_id)

    def list_book_reservations(self, book_id: str) -> List[Reservation]:
        self.get_book(book_id)
        return self.reservations.list_by_book(book_id)

    # ------------------------- Ratings ------------------------- #
    def add_rating(self, reader_id: str, book_id: str, score: int, review: str = "") -> Rating:
        return self.ratings.add_rating(reader_id, book_id, score, review)

    def list_ratings(self, book_id: str) -> List[Rating]:
        return self.ratings.list_by_book(book_id)

    def average_score(self, book_id: str) -> float:
        return self.ratings.average_score(book_id)

    # ------------------------- Reporting ------------------------- #
    def get_statistics(self) -> Dict[str, Any]:
        now = self.clock.now()
        open_reservations = self.reservations.list_open()
        return {
            "total_books": len(self.catalog.list_books()),
            "total_readers": self.readers.count(),
            "open_reservations": len(open_reservations),
            "overdue_reservations": sum(1 for r in open_reservations if r.is_overdue(now)),
        }
