import pytest

from booksmart.book import Book, Rarity
from booksmart.database import transaction
from booksmart.errors import BookHasOpenReservations, BookNotFound, ConflictError, InvalidBook, Unavailable


def test_add_book_starts_fully_available(lib):
    book = lib.add_book("Dune", "Frank Herbert", 4, publisher="Chilton", publishing_year=1965)

    stored = lib.get_book(book.id)
    assert stored.copies_total == 4
    assert stored.copies_available == 4
    assert stored.rarity is Rarity.COMMON
    assert stored.publisher == "Chilton"
    assert stored.publishing_year == 1965


@pytest.mark.parametrize("kwargs", [
    {"copies_total": 2, "rarity": "unique"},
    {"copies_total": -1},
    {"copies_total": 1, "age_limit": -5},
])
def test_add_book_rejects_invalid_records(lib, kwargs):
    with pytest.raises(InvalidBook):
        lib.add_book("Broken", "Nobody", **kwargs)


def test_add_book_requires_title(lib):
    with pytest.raises(InvalidBook):
        lib.add_book("   ", "Someone", 1)


def test_duplicate_id_rejected(lib):
    lib.catalog.add_book(Book(id="b-1", title="One", author="A", copies_total=1))
    with pytest.raises(InvalidBook):
        lib.catalog.add_book(Book(id="b-1", title="Two", author="B", copies_total=1))


def test_get_unknown_book(lib):
    assert lib.catalog.get("nope") is None
    with pytest.raises(BookNotFound):
        lib.get_book("nope")


def test_search_filters(lib):
    lib.add_book("Dune", "Frank Herbert", 2, genre="sci-fi", language="en")
    lib.add_book("Dune Messiah", "Frank Herbert", 1, genre="sci-fi", language="en", age_limit=16)
    lib.add_book("Master i Margarita", "Mikhail Bulgakov", 1, rarity="rare", genre="novel", language="ru")

    assert {b.title for b in lib.search_books(title="dune")} == {"Dune", "Dune Messiah"}
    assert [b.title for b in lib.search_books(author="Bulgakov")] == ["Master i Margarita"]
    assert [b.title for b in lib.search_books(language="ru")] == ["Master i Margarita"]
    assert [b.title for b in lib.search_books(rarity="rare")] == ["Master i Margarita"]
    assert [b.title for b in lib.search_books(genre="sci-fi", max_age_limit=12)] == ["Dune"]
    assert len(lib.search_books()) == 3


def test_list_books_sorted_by_title(lib):
    lib.add_book("Zorba", "Kazantzakis", 1)
    lib.add_book("Anna Karenina", "Tolstoy", 1)
    assert [b.title for b in lib.list_books()] == ["Anna Karenina", "Zorba"]


def test_delete_book(lib, book):
    lib.delete_book(book.id)
    assert lib.catalog.get(book.id) is None
    with pytest.raises(BookNotFound):
        lib.delete_book(book.id)


def test_delete_book_with_open_reservation(lib, reader, book):
    reservation = lib.reserve_book(reader.id, book.id)
    with pytest.raises(BookHasOpenReservations):
        lib.delete_book(book.id)

    lib.close_reservation(reservation.id)
    lib.delete_book(book.id)
    assert lib.catalog.get(book.id) is None


def test_take_copy_detects_stale_counter(lib, book):
    with pytest.raises(ConflictError):
        with transaction(lib.db_file) as conn:
            lib.catalog.take_copy(book.id, book.copies_available - 1, conn=conn)
    assert lib.get_book(book.id).copies_available == 3


def test_return_copy_never_exceeds_total(lib, book):
    with pytest.raises(ConflictError):
        with transaction(lib.db_file) as conn:
            lib.catalog.return_copy(book.id, conn=conn)
    assert lib.get_book(book.id).copies_available == book.copies_total


def test_copy_counter_round_trip(lib, book):
    with transaction(lib.db_file) as conn:
        lib.catalog.take_copy(book.id, 3, conn=conn)
    assert lib.get_book(book.id).copies_available == 2
    with transaction(lib.db_file) as conn:
        lib.catalog.return_copy(book.id, conn=conn)
    assert lib.get_book(book.id).copies_available == 3


def test_locked_database_makes_catalog_writes_unavailable(busy_lib, write_locked):
    book = busy_lib.add_book("Dune", "Frank Herbert", 1)

    with write_locked(busy_lib.db_file):
        with pytest.raises(Unavailable):
            busy_lib.delete_book(book.id)
        with pytest.raises(Unavailable):
            busy_lib.add_book("Hyperion", "Dan Simmons", 2)

    assert [b.title for b in busy_lib.list_books()] == ["Dune"]
    busy_lib.delete_book(book.id)
    assert busy_lib.list_books() == []
