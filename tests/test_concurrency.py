import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from booksmart.clock import ManualClock
from booksmart.errors import LibraryError, ReservationLimitExceeded, UniqueBookUnavailable, Unavailable
from booksmart.locks import KeyedLock


def _attempt(fn, *args):
    try:
        return fn(*args)
    except LibraryError as e:
        return e


def test_unique_book_has_one_open_reservation(lib):
    unique = lib.add_book("Codex Gigas", "Herman the Recluse", 1, rarity="unique")
    readers = []
    for i in range(8):
        reader = lib.register_reader(f"Reader {i}", f"+7900000{i:04d}", 30)
        lib.create_lib_card(reader.id)
        readers.append(reader)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda r: _attempt(lib.reserve_book, r.id, unique.id), readers))

    successes = [r for r in results if not isinstance(r, LibraryError)]
    failures = [r for r in results if isinstance(r, LibraryError)]
    assert len(successes) == 1
    assert all(isinstance(f, UniqueBookUnavailable) for f in failures)
    assert len(lib.reservations.list_open_by_book(unique.id)) == 1
    assert lib.get_book(unique.id).copies_available == 0


def test_reader_limit_under_concurrency(lib, reader):
    books = [lib.add_book(f"Volume {i}", "Encyclopedist", 1) for i in range(10)]

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(lambda b: _attempt(lib.reserve_book, reader.id, b.id), books))

    successes = [r for r in results if not isinstance(r, LibraryError)]
    failures = [r for r in results if isinstance(r, LibraryError)]
    assert len(successes) == 5
    assert all(isinstance(f, ReservationLimitExceeded) for f in failures)
    assert lib.reservations.count_open_by_reader(reader.id) == 5


def test_copy_counter_stays_in_bounds(lib):
    book = lib.add_book("Popular Title", "Bestseller", 3)
    readers = []
    for i in range(6):
        reader = lib.register_reader(f"Reader {i}", f"+7911000{i:04d}", 30)
        lib.create_lib_card(reader.id)
        readers.append(reader)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda r: _attempt(lib.reserve_book, r.id, book.id), readers))

    successes = [r for r in results if not isinstance(r, LibraryError)]
    assert len(successes) == 3
    assert lib.get_book(book.id).copies_available == 0

    with ThreadPoolExecutor(max_workers=3) as pool:
        list(pool.map(lambda r: lib.close_reservation(r.id), successes))
    assert lib.get_book(book.id).copies_available == 3


def test_keyed_lock_times_out():
    locks = KeyedLock(timeout=0.05)
    with locks.hold("book:1"):
        with pytest.raises(Unavailable):
            with locks.hold("book:1"):
                pass
        assert len(locks) == 1
        # Unrelated keys never contend
        with locks.hold("book:2"):
            pass
    assert len(locks) == 0


def test_keyed_lock_releases_on_error():
    locks = KeyedLock(timeout=0.05)
    with pytest.raises(RuntimeError):
        with locks.hold("reader:1", "book:1"):
            raise RuntimeError("boom")
    assert len(locks) == 0
    with locks.hold("book:1", "reader:1"):
        pass


def test_keyed_lock_forgets_released_keys(lib, reader):
    books = [lib.add_book(f"Book {i}", "Author", 1) for i in range(4)]
    for b in books:
        lib.close_reservation(lib.reserve_book(reader.id, b.id).id)
    assert len(lib.engine.locks) == 0


def test_manual_clock_is_thread_safe():
    clock = ManualClock()
    start = clock.now()
    threads = [threading.Thread(target=clock.advance, kwargs={"seconds": 1}) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert (clock.now() - start).total_seconds() == 20
