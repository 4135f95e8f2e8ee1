import re
from typing import Optional

from booksmart.errors import InvalidExtensionPeriod, InvalidReader, InvalidScore

MIN_SCORE = 0
MAX_SCORE = 5


class LendingValidator:
    """Input checks for lending requests. Raise validation errors, never deny."""

    @staticmethod
    def validate_score(score) -> int:
        # bool is an int subclass; reject it explicitly
        if isinstance(score, bool) or not isinstance(score, int):
            raise InvalidScore()
        if not MIN_SCORE <= score <= MAX_SCORE:
            raise InvalidScore(f"Score {score} is out of range [{MIN_SCORE}, {MAX_SCORE}].")
        return score

    @staticmethod
    def validate_extension_days(days, max_days: Optional[int] = None) -> int:
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise InvalidExtensionPeriod()
        if max_days is not None and days > max_days:
            raise InvalidExtensionPeriod(f"Extension period cannot exceed {max_days} days.")
        return days


class TextValidator:
    """Reader profile and review text checks."""

    @staticmethod
    def normalize_phone(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9+]", "", raw)
        return s

    @staticmethod
    def validate_reader(fio: Optional[str], phone_number: Optional[str], age) -> None:
        if fio is None or not fio.strip() or not any(c.isalpha() for c in fio):
            raise InvalidReader("Reader name is required.")
        phone = TextValidator.normalize_phone(phone_number)
        if len(phone.lstrip("+")) < 5:
            raise InvalidReader("Phone number is invalid.")
        if isinstance(age, bool) or not isinstance(age, int) or age < 0:
            raise InvalidReader("Age must be a non-negative integer.")

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # strip HTML tags from free-text reviews
        cleaned = re.sub(r"<[^>]*>", "", text)
        return cleaned.strip()
