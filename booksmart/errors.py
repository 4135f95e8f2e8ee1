"""Error kinds raised by the lending core.

Three families matter to callers:

* ``ValidationError`` - malformed input, never retried.
* ``BusinessRuleError`` - a named denial; the operation performed no mutation.
* ``Unavailable`` / ``StorageError`` - the request could not be evaluated at all.

``ConflictError`` (a concurrent change or a busy database) drives the retry
loop; once the attempts run out the caller sees ``Unavailable`` instead.
"""

from __future__ import annotations


class LibraryError(Exception):
    """Base class for every error the core raises."""

    code = "library_error"
    default_message = "Library operation failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


# ------------------------- Validation ------------------------- #
class ValidationError(LibraryError, ValueError):
    code = "invalid"
    default_message = "Invalid input."


class InvalidScore(ValidationError):
    code = "invalid_score"
    default_message = "Score must be an integer between 0 and 5."


class InvalidExtensionPeriod(ValidationError):
    code = "invalid_extension_period"
    default_message = "Extension period must be a positive number of days."


class InvalidBook(ValidationError):
    code = "invalid_book"
    default_message = "Book record violates catalog constraints."


class InvalidReader(ValidationError):
    code = "invalid_reader"
    default_message = "Reader record is invalid."


# ------------------------- Business rules ------------------------- #
class BusinessRuleError(LibraryError):
    code = "denied"
    default_message = "Operation denied."


class NotFoundError(BusinessRuleError, LookupError):
    code = "not_found"
    default_message = "Not found."


class ReaderNotFound(NotFoundError):
    code = "reader_not_found"
    default_message = "Reader does not exist."


class ReaderAlreadyExists(BusinessRuleError):
    code = "reader_already_exists"
    default_message = "A reader with this phone number already exists."


class BookNotFound(NotFoundError):
    code = "book_not_found"
    default_message = "Book does not exist."


class BookHasOpenReservations(BusinessRuleError):
    code = "book_has_open_reservations"
    default_message = "Book cannot be removed while copies are reserved."


class BookAlreadyFavorite(BusinessRuleError):
    code = "book_already_favorite"
    default_message = "Book is already in the reader's favorites."


class LibCardMissing(NotFoundError):
    code = "lib_card_missing"
    default_message = "Reader has no library card."


class LibCardInvalid(BusinessRuleError):
    code = "lib_card_invalid"
    default_message = "Library card is inactive or expired."


class LibCardAlreadyExists(BusinessRuleError):
    code = "lib_card_already_exists"
    default_message = "Reader already has a library card."


class LibCardStillValid(BusinessRuleError):
    code = "lib_card_still_valid"
    default_message = "Library card is still valid and cannot be renewed."


class ReaderHasOverdueBook(BusinessRuleError):
    code = "reader_has_overdue_book"
    default_message = "Reader has an overdue book."


class ReservationLimitExceeded(BusinessRuleError):
    code = "reservation_limit_exceeded"
    default_message = "Reader has reached the open reservation limit."


class NoCopiesAvailable(BusinessRuleError):
    code = "no_copies_available"
    default_message = "No copies of this book are available."


class UniqueBookUnavailable(BusinessRuleError):
    code = "unique_book_unavailable"
    default_message = "The only copy of this unique book is already reserved."


class AgeRestricted(BusinessRuleError):
    code = "age_restricted"
    default_message = "Reader is younger than the book's age limit."


class DuplicateReservation(BusinessRuleError):
    code = "duplicate_reservation"
    default_message = "Reader already has an open reservation for this book."


class ReservationNotFound(NotFoundError):
    code = "reservation_not_found"
    default_message = "Reservation does not exist."


class ReservationClosed(BusinessRuleError):
    code = "reservation_closed"
    default_message = "Reservation is already closed."


class ReservationExpired(BusinessRuleError):
    code = "reservation_expired"
    default_message = "Reservation has expired; the book must be returned."


class AlreadyExtended(BusinessRuleError):
    code = "already_extended"
    default_message = "Reservation has already been extended."


class RareBookNotExtendable(BusinessRuleError):
    code = "rare_book_not_extendable"
    default_message = "Reservations of rare and unique books cannot be extended."


class NeverBorrowed(BusinessRuleError):
    code = "never_borrowed"
    default_message = "Reader has never reserved this book."


class DuplicateRating(BusinessRuleError):
    code = "duplicate_rating"
    default_message = "Reader has already rated this book."


class NoRatings(NotFoundError):
    code = "no_ratings"
    default_message = "Book has no ratings."


# ------------------------- Infrastructure ------------------------- #
class ConflictError(LibraryError):
    code = "conflict"
    default_message = "Concurrent modification detected."


class Unavailable(LibraryError):
    code = "unavailable"
    default_message = "Service temporarily unavailable, please retry."


class StorageError(LibraryError):
    code = "storage_error"
    default_message = "Storage backend failure."
