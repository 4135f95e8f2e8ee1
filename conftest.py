import os
import sqlite3
from contextlib import contextmanager
from dataclasses import replace

import pytest

from booksmart.clock import ManualClock
from booksmart.library import Library
from config import settings


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def test_settings():
    return replace(settings, reservation_limit=5, loan_period_days=14, lib_card_validity_days=365,
                   max_extension_days=30, conflict_retry_attempts=3, lock_timeout_seconds=5)


@pytest.fixture
def lib(tmp_path, request, clock, test_settings):
    # A fresh database file for each test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file, clock=clock, settings=test_settings)
    yield lib
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def busy_lib(tmp_path, clock, test_settings):
    """A library that waits only 0.1s per attempt for a locked database."""
    fast = replace(test_settings, sqlite_timeout_seconds=0.1)
    return Library(db_file=str(tmp_path / "busy.db"), clock=clock, settings=fast)


@contextmanager
def _write_locked(db_file):
    blocker = sqlite3.connect(db_file, isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        yield blocker
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()


@pytest.fixture
def write_locked():
    """Context manager holding the database write lock from a second connection."""
    return _write_locked


@pytest.fixture
def reader(lib):
    """An adult reader holding a valid library card."""
    reader = lib.register_reader("Ivan Petrov", "+7 900 123-45-67", 30)
    lib.create_lib_card(reader.id)
    return reader


@pytest.fixture
def book(lib):
    return lib.add_book("Dune", "Frank Herbert", 3, genre="sci-fi", language="en")
