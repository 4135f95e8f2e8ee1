from __future__ import annotations

from enum import Enum

from booksmart.errors import InvalidBook


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    UNIQUE = "unique"


class Book:
    """Represents a single catalogued title and its physical copy counters."""

    def __init__(self, id: str, title: str, author: str, copies_total: int,
                 copies_available: int | None = None, rarity: Rarity | str = Rarity.COMMON,
                 age_limit: int = 0,
                 # descriptive fields
                 publisher: str | None = None, genre: str | None = None,
                 publishing_year: int | None = None, language: str | None = None,
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.copies_total = copies_total
        self.copies_available = copies_total if copies_available is None else copies_available
        self.rarity = Rarity(rarity)
        self.age_limit = age_limit

        self.publisher = publisher
        self.genre = genre
        self.publishing_year = publishing_year
        self.language = language
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.copies_available}/{self.copies_total} available)"

    @property
    def is_scarce(self) -> bool:
        return self.rarity in (Rarity.RARE, Rarity.UNIQUE)

    def validate(self) -> None:
        """Raise ``InvalidBook`` when the record breaks a catalog invariant."""
        if not self.title or not self.author:
            raise InvalidBook("Title and author are required.")
        if self.copies_total < 0:
            raise InvalidBook("copies_total must be non-negative.")
        if not 0 <= self.copies_available <= self.copies_total:
            raise InvalidBook("copies_available must be between 0 and copies_total.")
        if self.age_limit < 0:
            raise InvalidBook("age_limit must be non-negative.")
        if self.rarity is Rarity.UNIQUE and self.copies_total != 1:
            raise InvalidBook("A unique book must have exactly one copy.")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "copies_total": self.copies_total,
            "copies_available": self.copies_available,
            "rarity": self.rarity.value,
            "age_limit": self.age_limit,
            "publisher": self.publisher,
            "genre": self.genre,
            "publishing_year": self.publishing_year,
            "language": self.language,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            copies_total=data["copies_total"],
            copies_available=data.get("copies_available"),
            rarity=data.get("rarity") or Rarity.COMMON,
            age_limit=data.get("age_limit") or 0,
            publisher=data.get("publisher"),
            genre=data.get("genre"),
            publishing_year=data.get("publishing_year"),
            language=data.get("language"),
            created_at=data.get("created_at"),
        )
