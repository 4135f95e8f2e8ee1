import logging
from typing import Callable, TypeVar

from booksmart.errors import ConflictError, Unavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(operation: str, attempt: Callable[[], T], attempts: int) -> T:
    """Run ``attempt`` again from scratch on every ``ConflictError``.

    After ``attempts`` conflicting runs the caller gets ``Unavailable``; a
    ``ConflictError`` never escapes. Any other error propagates at once.
    """
    attempts = max(1, attempts)
    for number in range(1, attempts + 1):
        try:
            return attempt()
        except ConflictError as e:
            logger.warning(f"{operation}: conflict on attempt {number}/{attempts}: {e}")
    logger.error(f"{operation}: giving up after {attempts} conflicting attempts")
    raise Unavailable()
