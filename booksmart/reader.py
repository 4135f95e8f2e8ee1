from __future__ import annotations


class Reader:
    """A registered library reader. Credentials live with the identity service."""

    def __init__(self, id: str, fio: str, phone_number: str, age: int,
                 created_at: str | None = None) -> None:
        self.id = id
        self.fio = fio.strip()
        self.phone_number = phone_number.strip()
        self.age = age
        self.created_at = created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fio": self.fio,
            "phone_number": self.phone_number,
            "age": self.age,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Reader":
        return Reader(
            id=data["id"],
            fio=data["fio"],
            phone_number=data["phone_number"],
            age=data["age"],
            created_at=data.get("created_at"),
        )
