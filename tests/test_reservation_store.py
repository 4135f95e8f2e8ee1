from datetime import timedelta

import pytest

from booksmart.database import connection, new_id
from booksmart.errors import ConflictError
from booksmart.reservation import Reservation, ReservationState


def test_expired_state_is_derived_not_stored(lib, reader, book, clock):
    reservation = lib.reserve_book(reader.id, book.id)
    clock.advance(days=15)

    [listed] = lib.list_reader_reservations(reader.id)
    assert listed.effective_state(clock.now()) is ReservationState.EXPIRED
    assert listed.to_dict(clock.now())["state"] == "Expired"

    with connection(lib.db_file) as conn:
        row = conn.execute("SELECT state FROM reservations WHERE id = ?", (reservation.id,)).fetchone()
    assert row["state"] == "Issued"


def test_closed_reservation_never_expires(lib, reader, book, clock):
    reservation = lib.reserve_book(reader.id, book.id)
    lib.close_reservation(reservation.id)
    clock.advance(days=100)
    assert lib.get_reservation(reservation.id).effective_state(clock.now()) is ReservationState.CLOSED


def test_open_lists(lib, reader, book):
    other = lib.add_book("Hyperion", "Dan Simmons", 1)
    kept = lib.reserve_book(reader.id, book.id)
    closed = lib.reserve_book(reader.id, other.id)
    lib.close_reservation(closed.id)

    store = lib.reservations
    assert [r.id for r in store.list_open_by_reader(reader.id)] == [kept.id]
    assert [r.id for r in store.list_open_by_book(book.id)] == [kept.id]
    assert store.list_open_by_book(other.id) == []
    assert {r.id for r in store.list_by_reader(reader.id)} == {kept.id, closed.id}
    assert store.count_open_by_reader(reader.id) == 1
    assert store.exists_for(reader.id, other.id)
    assert not store.exists_for("someone-else", other.id)


def test_list_book_reservations(lib, reader, book):
    reservation = lib.reserve_book(reader.id, book.id)
    assert [r.id for r in lib.list_book_reservations(book.id)] == [reservation.id]


def test_one_open_reservation_per_pair_in_storage(lib, reader, book, clock):
    lib.reserve_book(reader.id, book.id)
    duplicate = Reservation(
        id=new_id(), reader_id=reader.id, book_id=book.id,
        issue_date=clock.now(), return_date=clock.now() + timedelta(days=14),
    )
    with pytest.raises(ConflictError):
        lib.reservations.insert(duplicate)


def test_extend_with_stale_version(lib, reader, book):
    reservation = lib.reserve_book(reader.id, book.id)
    stale = lib.get_reservation(reservation.id)
    lib.reservations.extend(lib.get_reservation(reservation.id), 3)

    with pytest.raises(ConflictError):
        lib.reservations.extend(stale, 3)


def test_store_close_is_atomic_with_copy_return(lib, reader, book):
    reservation = lib.reserve_book(reader.id, book.id)
    closed = lib.reservations.close(reservation.id)

    assert closed.state is ReservationState.CLOSED
    assert lib.get_book(book.id).copies_available == 3
    with pytest.raises(ConflictError):
        lib.reservations.close(reservation.id)
    assert lib.get_book(book.id).copies_available == 3
