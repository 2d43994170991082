import os
import json
from typing import Any, List
from rich.console import Console
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKRENTAL_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_json(items: List[Any]) -> None:
    print(json.dumps([item.to_dict() for item in items], ensure_ascii=False))


def print_categories(categories: List[Any]) -> None:
    mode = get_output_mode()

    if not categories:
        print("No categories found.")
        return

    if mode == "json":
        _print_json(categories)
    elif mode == "rich":
        table = Table(title="Categories", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        for c in categories:
            table.add_row(str(c.id), c.name)
        _console.print(table)
    else:
        for c in categories:
            print(f"{c.id} - {c.name}")


def print_books(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: '#id Title by Authors - price for N days [Category]' lines, or 'No books found.'
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books found.")
        return

    if mode == "json":
        _print_json(books)
    elif mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Authors", style="white")
        table.add_column("Price", justify="right")
        table.add_column("Days", justify="right")
        table.add_column("Category")
        for b in books:
            table.add_row(str(b.id), b.title, b.authors or "", f"{b.rental_price:.2f}",
                          str(b.rental_duration), b.category_name or "")
        _console.print(table)
    else:
        for b in books:
            print(f"#{b.id} {b.title} by {b.authors} - {b.rental_price:.2f} for {b.rental_duration} days "
                  f"[{b.category_name or 'Uncategorized'}]")


def print_rentals(rentals: List[Any]) -> None:
    mode = get_output_mode()

    if not rentals:
        print("No rentals found.")
        return

    if mode == "json":
        _print_json(rentals)
    elif mode == "rich":
        table = Table(title="Rentals", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("Rented on")
        table.add_column("Return by")
        for r in rentals:
            table.add_row(str(r.id), r.title or str(r.book_id), r.rental_date, r.return_date)
        _console.print(table)
    else:
        for r in rentals:
            print(f"#{r.id} {r.title or r.book_id}: {r.rental_date} -> {r.return_date}")
