import sqlite3
from dataclasses import replace

import pytest

from booksmart import database
from booksmart.database import connection, transaction
from booksmart.errors import ConflictError, StorageError
from booksmart.library import Library


def test_busy_transaction_is_a_conflict(busy_lib, write_locked):
    with write_locked(busy_lib.db_file):
        with pytest.raises(ConflictError):
            with transaction(busy_lib.db_file, timeout=0.05):
                pass


def test_busy_single_statement_is_a_conflict(busy_lib, write_locked):
    with write_locked(busy_lib.db_file):
        with pytest.raises(ConflictError):
            with connection(busy_lib.db_file, timeout=0.05) as conn:
                conn.execute("DELETE FROM books")


def test_other_sqlite_errors_are_storage_errors(lib):
    with pytest.raises(StorageError):
        with connection(lib.db_file) as conn:
            conn.execute("SELECT * FROM no_such_table")


def test_library_settings_reach_every_connection(tmp_path, clock, test_settings, monkeypatch):
    real_connect = sqlite3.connect
    timeouts = []

    def recording_connect(*args, **kwargs):
        timeouts.append(kwargs.get("timeout"))
        return real_connect(*args, **kwargs)

    monkeypatch.setattr(database.sqlite3, "connect", recording_connect)

    lib = Library(db_file=str(tmp_path / "timeouts.db"), clock=clock,
                  settings=replace(test_settings, sqlite_timeout_seconds=0.25))
    reader = lib.register_reader("Ivan Petrov", "+7 900 123-45-67", 30)
    lib.create_lib_card(reader.id)
    book = lib.add_book("Dune", "Frank Herbert", 1)
    reservation = lib.reserve_book(reader.id, book.id)
    lib.add_rating(reader.id, book.id, 5)
    lib.close_reservation(reservation.id)

    assert timeouts
    assert set(timeouts) == {0.25}
