import logging
import sqlite3
import uuid
from typing import Optional

from config import Settings, settings as default_settings
from booksmart.clock import Clock, SystemClock
from booksmart.database import new_id, to_db_time, use_connection
from booksmart.errors import LibCardAlreadyExists, LibCardMissing, LibCardStillValid
from booksmart.lib_card import LibCard
from booksmart.reader_registry import ReaderRegistry
from booksmart.retry import retry_on_conflict

logger = logging.getLogger(__name__)

CARD_NUMBER_DIGITS = 13


def generate_card_number() -> str:
    return str(uuid.uuid4().int % 10 ** CARD_NUMBER_DIGITS).zfill(CARD_NUMBER_DIGITS)


class LibCardRegistry:
    """Owns LibCard records: one per reader, renewed in place."""

    def __init__(self, readers: ReaderRegistry, db_file: Optional[str] = None,
                 clock: Optional[Clock] = None, settings: Optional[Settings] = None) -> None:
        self.readers = readers
        self.db_file = db_file
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings
        self.timeout = self.settings.sqlite_timeout_seconds

    def create(self, reader_id: str) -> LibCard:
        self.readers.require(reader_id)
        if self.get_by_reader(reader_id) is not None:
            raise LibCardAlreadyExists()

        card = LibCard(
            id=new_id(),
            reader_id=reader_id,
            lib_card_num=generate_card_number(),
            issue_date=self.clock.now(),
            validity_days=self.settings.lib_card_validity_days,
            active=True,
        )
        retry_on_conflict("create_lib_card", lambda: self._insert(card), self.settings.conflict_retry_attempts)
        logger.info(f"Library card {card.lib_card_num} issued to reader {reader_id}")
        return card

    def _insert(self, card: LibCard) -> None:
        with use_connection(self.db_file, timeout=self.timeout) as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO lib_cards (id, reader_id, lib_card_num, issue_date, validity_days, active)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (card.id, card.reader_id, card.lib_card_num, to_db_time(card.issue_date),
                     card.validity_days, int(card.active)),
                )
            except sqlite3.IntegrityError as e:
                # Lost a race with a concurrent create for the same reader
                raise LibCardAlreadyExists() from e

    def _update(self, operation: str, sql: str, params: tuple) -> None:
        def run() -> None:
            with use_connection(self.db_file, timeout=self.timeout) as conn:
                conn.execute(sql, params)

        retry_on_conflict(operation, run, self.settings.conflict_retry_attempts)

    def get_by_reader(self, reader_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[LibCard]:
        with use_connection(self.db_file, conn, timeout=self.timeout) as c:
            row = c.execute(
                """
                SELECT id, reader_id, lib_card_num, issue_date, validity_days, active
                FROM lib_cards WHERE reader_id = ?
                """,
                (reader_id,),
            ).fetchone()
            return LibCard.from_row(row) if row else None

    def require(self, reader_id: str) -> LibCard:
        card = self.get_by_reader(reader_id)
        if card is None:
            raise LibCardMissing()
        return card

    def renew(self, reader_id: str) -> LibCard:
        """Restart the validity window. Only expired or deactivated cards may be renewed."""
        card = self.require(reader_id)
        now = self.clock.now()
        if card.is_valid(now):
            raise LibCardStillValid()

        self._update("renew_lib_card", "UPDATE lib_cards SET issue_date = ?, active = 1 WHERE id = ?",
                     (to_db_time(now), card.id))
        card.issue_date = now
        card.active = True
        logger.info(f"Library card {card.lib_card_num} renewed for reader {reader_id}")
        return card

    def deactivate(self, reader_id: str) -> LibCard:
        card = self.require(reader_id)
        self._update("deactivate_lib_card", "UPDATE lib_cards SET active = 0 WHERE id = ?", (card.id,))
        card.active = False
        logger.info(f"Library card {card.lib_card_num} deactivated")
        return card
