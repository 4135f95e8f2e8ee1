import json
import logging
import os
import subprocess
import sys
import webbrowser
from typing import Any, Dict, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from booksmart import database
from booksmart.errors import LibraryError
from booksmart.library import Library
from config import settings

logging.basicConfig(level=settings.log_level)

# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKSMART_CLI_OUTPUT"

console = Console()
app = typer.Typer(help="BookSmart lending CLI")


def get_library() -> Library:
    return Library(db_file=database.DATABASE_FILE)


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _fail(error: LibraryError) -> NoReturn:
    print(f"Error: {error.message} [{error.code}]")
    raise typer.Exit(code=1)


def _print_records(title: str, records: List[Dict[str, Any]], columns: List[str], empty: str) -> None:
    mode = get_output_mode()
    if not records:
        print(empty)
        return
    if mode == "json":
        print(json.dumps(records, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column)
        for record in records:
            table.add_row(*(str(record.get(column, "")) for column in columns))
        console.print(table)
    else:
        for record in records:
            print(" | ".join(str(record.get(column, "")) for column in columns))


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options."""
    if output and output.lower() in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = output.lower()


@app.command("init-db")
def cli_init_db():
    """Create the database schema."""
    lib = get_library()
    print(f"Database ready at {lib.db_file}")


@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    copies: int = typer.Option(1, "--copies", "-c", help="Number of physical copies"),
    rarity: str = typer.Option("common", "--rarity", "-r", help="common | rare | unique"),
    age_limit: int = typer.Option(0, "--age-limit", help="Minimum reader age"),
    genre: Optional[str] = typer.Option(None, "--genre"),
    language: Optional[str] = typer.Option(None, "--language"),
):
    """Add a book to the catalog."""
    try:
        book = get_library().add_book(title, author, copies, rarity=rarity, age_limit=age_limit,
                                      genre=genre, language=language)
    except LibraryError as e:
        _fail(e)
    except ValueError:
        print(f"Error: unknown rarity '{rarity}'")
        raise typer.Exit(code=1)
    print(f"Added: {book.id} - {book.title} by {book.author}")


@app.command("books")
def cli_books(
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Filter by title"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Filter by author"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Filter by genre"),
):
    """List catalog books, optionally filtered."""
    books = get_library().search_books(title=title, author=author, genre=genre)
    _print_records(
        "Books",
        [b.to_dict() for b in books],
        ["id", "title", "author", "copies_available", "copies_total", "rarity"],
        "No books in library.",
    )


@app.command("register-reader")
def cli_register_reader(fio: str, phone_number: str, age: int):
    """Register a new reader."""
    try:
        reader = get_library().register_reader(fio, phone_number, age)
    except LibraryError as e:
        _fail(e)
    print(f"Registered reader {reader.id}")


@app.command("issue-card")
def cli_issue_card(reader_id: str, renew: bool = typer.Option(False, "--renew", help="Renew an expired card")):
    """Issue (or renew) a reader's library card."""
    lib = get_library()
    try:
        card = lib.renew_lib_card(reader_id) if renew else lib.create_lib_card(reader_id)
    except LibraryError as e:
        _fail(e)
    print(f"Card {card.lib_card_num} valid until {card.expires_at.date().isoformat()}")


@app.command("reserve")
def cli_reserve(reader_id: str, book_id: str):
    """Reserve a book for a reader."""
    try:
        reservation = get_library().reserve_book(reader_id, book_id)
    except LibraryError as e:
        _fail(e)
    print(f"Reservation {reservation.id} due {reservation.return_date.date().isoformat()}")


@app.command("extend")
def cli_extend(reservation_id: str, days: int):
    """Extend a reservation's return date once."""
    try:
        reservation = get_library().extend_reservation(reservation_id, days)
    except LibraryError as e:
        _fail(e)
    print(f"Reservation {reservation.id} now due {reservation.return_date.date().isoformat()}")


@app.command("return")
def cli_return(reservation_id: str):
    """Close a reservation and return the copy."""
    try:
        reservation = get_library().close_reservation(reservation_id)
    except LibraryError as e:
        _fail(e)
    print(f"Reservation {reservation.id} closed.")


@app.command("reservations")
def cli_reservations(reader_id: str):
    """Show a reader's reservations."""
    lib = get_library()
    try:
        reservations = lib.list_reader_reservations(reader_id)
    except LibraryError as e:
        _fail(e)
    now = lib.now()
    _print_records(
        "Reservations",
        [r.to_dict(now) for r in reservations],
        ["id", "book_id", "state", "return_date"],
        "No reservations.",
    )


@app.command("stats")
def cli_stats():
    """Show lending statistics."""
    stats = get_library().get_statistics()
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(stats))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key.replace('_', ' ').title()}:[/] {value}" for key, value in stats.items())
        console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")


@app.command("serve")
def serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    open_browser: bool = typer.Option(False, "--open-browser", help="Open the API docs in a browser"),
):
    """Run the HTTP API with uvicorn."""
    url = f"http://{host}:{port}/docs"
    console.print(f"[green]Starting API on [link={url}]{url}[/link][/]")
    if open_browser:
        webbrowser.open(url)
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


if __name__ == "__main__":
    app()
