from __future__ import annotations

from datetime import datetime, timedelta

from booksmart.database import from_db_time, to_db_time


class LibCard:
    """A reader's library card. One per reader; renewed in place."""

    def __init__(self, id: str, reader_id: str, lib_card_num: str, issue_date: datetime,
                 validity_days: int, active: bool = True) -> None:
        self.id = id
        self.reader_id = reader_id
        self.lib_card_num = lib_card_num
        self.issue_date = issue_date
        self.validity_days = validity_days
        self.active = active

    @property
    def expires_at(self) -> datetime:
        return self.issue_date + timedelta(days=self.validity_days)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return self.active and not self.is_expired(now)

    def to_dict(self, now: datetime | None = None) -> dict:
        data = {
            "id": self.id,
            "reader_id": self.reader_id,
            "lib_card_num": self.lib_card_num,
            "issue_date": to_db_time(self.issue_date),
            "validity_days": self.validity_days,
            "active": self.active,
        }
        if now is not None:
            data["expired"] = self.is_expired(now)
        return data

    @staticmethod
    def from_row(row) -> "LibCard":
        return LibCard(
            id=row["id"],
            reader_id=row["reader_id"],
            lib_card_num=row["lib_card_num"],
            issue_date=from_db_time(row["issue_date"]),
            validity_days=row["validity_days"],
            active=bool(row["active"]),
        )
