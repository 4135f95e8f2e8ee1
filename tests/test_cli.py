import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

import main
from booksmart.errors import Unavailable
from booksmart.library import Library
from main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_lib(lib, monkeypatch):
    monkeypatch.setattr(main, "get_library", lambda: lib)
    monkeypatch.delenv(main.OUTPUT_MODE_ENV, raising=False)
    return lib


def test_init_db(lib):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert f"Database ready at {lib.db_file}" in result.stdout


def test_list_no_books():
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book_and_list(lib):
    result = runner.invoke(app, ["add-book", "Dune", "Frank Herbert", "--copies", "2", "--genre", "sci-fi"])
    assert result.exit_code == 0
    assert "Added:" in result.stdout
    assert "Dune by Frank Herbert" in result.stdout

    listing = runner.invoke(app, ["books", "--author", "Herbert"])
    assert "Dune | Frank Herbert | 2 | 2 | common" in listing.stdout


def test_add_invalid_unique_book():
    result = runner.invoke(app, ["add-book", "Codex", "Anon", "--copies", "2", "--rarity", "unique"])
    assert result.exit_code == 1
    assert "[invalid_book]" in result.stdout


def test_books_json_output(lib, monkeypatch):
    monkeypatch.setenv(main.OUTPUT_MODE_ENV, "plain")
    book = lib.add_book("Dune", "Frank Herbert", 1)

    result = runner.invoke(app, ["--output", "json", "books"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload[0]["id"] == book.id


def test_lending_flow(lib):
    book = lib.add_book("Dune", "Frank Herbert", 1)

    registered = runner.invoke(app, ["register-reader", "Ivan Petrov", "+79001234567", "30"])
    assert registered.exit_code == 0
    reader_id = registered.stdout.strip().split()[-1]

    issued = runner.invoke(app, ["issue-card", reader_id])
    assert issued.exit_code == 0
    assert "valid until 2024-12-31" in issued.stdout

    reserved = runner.invoke(app, ["reserve", reader_id, book.id])
    assert reserved.exit_code == 0
    assert "due 2024-01-15" in reserved.stdout
    reservation_id = reserved.stdout.split()[1]

    extended = runner.invoke(app, ["extend", reservation_id, "5"])
    assert extended.exit_code == 0
    assert "now due 2024-01-20" in extended.stdout

    listing = runner.invoke(app, ["reservations", reader_id])
    assert f"{reservation_id} | {book.id} | Extended" in listing.stdout

    returned = runner.invoke(app, ["return", reservation_id])
    assert returned.exit_code == 0
    assert f"Reservation {reservation_id} closed." in returned.stdout
    assert lib.get_book(book.id).copies_available == 1


def test_reserve_denied(lib, reader):
    result = runner.invoke(app, ["reserve", reader.id, "no-such-book"])
    assert result.exit_code == 1
    assert "Error: Book does not exist. [book_not_found]" in result.stdout


def test_reserve_unavailable(lib, reader, book, monkeypatch):
    monkeypatch.setattr(Library, "reserve_book", MagicMock(side_effect=Unavailable()))

    result = runner.invoke(app, ["reserve", reader.id, book.id])
    assert result.exit_code == 1
    assert "[unavailable]" in result.stdout


def test_stats(lib, reader, book):
    lib.reserve_book(reader.id, book.id)
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Open Reservations: 1" in result.stdout


@patch("subprocess.run")
@patch("webbrowser.open")
def test_serve_command(mock_webbrowser_open, mock_subprocess_run):
    result = runner.invoke(app, ["serve", "--port", "8123", "--open-browser"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_webbrowser_open.assert_called_once_with("http://127.0.0.1:8123/docs")
    args = mock_subprocess_run.call_args[0][0]
    assert "api:app" in args and "8123" in args
