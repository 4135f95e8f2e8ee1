from __future__ import annotations


class Rating:
    def __init__(self, id: str, reader_id: str, book_id: str, score: int, review: str = "",
                 created_at: str | None = None) -> None:
        self.id = id
        self.reader_id = reader_id
        self.book_id = book_id
        self.score = score
        self.review = review
        self.created_at = created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reader_id": self.reader_id,
            "book_id": self.book_id,
            "score": self.score,
            "review": self.review,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Rating":
        return Rating(
            id=data["id"],
            reader_id=data["reader_id"],
            book_id=data["book_id"],
            score=data["score"],
            review=data.get("review") or "",
            created_at=data.get("created_at"),
        )
