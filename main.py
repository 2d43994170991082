import sqlite3
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

import database
from config import settings
from marketplace import Marketplace, MarketplaceError
from ui_helpers import print_books, print_categories, print_rentals, set_output_mode

APP_NAME = "Book Rental CLI"

console = Console()
app = typer.Typer(help=APP_NAME)


def get_marketplace() -> Marketplace:
    """Open the marketplace against the configured database file."""
    try:
        return Marketplace()
    except (MarketplaceError, sqlite3.Error) as e:
        console.print(f"[bold red]Could not open the marketplace: {e}[/]")
        raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the tables and seed the default categories."""
    database.initialize_database()
    count = len(get_marketplace().list_categories())
    print(f"Database ready at {database.resolve_database_file()} with {count} categories.")


@app.command("categories")
def cli_categories():
    """List book categories."""
    print_categories(get_marketplace().list_categories())


@app.command("books")
def cli_books(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Substring of title or authors"),
    min_price: Optional[float] = typer.Option(None, "--min-price", min=0),
    max_price: Optional[float] = typer.Option(None, "--max-price", min=0),
    category: Optional[int] = typer.Option(None, "--category", "-c", help="Category id"),
):
    """Browse books listed for rent."""
    books = get_marketplace().list_books(query=query, min_price=min_price, max_price=max_price,
                                         category_id=category)
    print_books(books)


@app.command("history")
def cli_history(user_id: int):
    """Show the rental history of a user."""
    print_rentals(get_marketplace().rental_history(user_id))


@app.command("recommend")
def cli_recommend(user_id: int):
    """Suggest books the user has not rented yet."""
    print_books(get_marketplace().recommendations(user_id))


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart on code changes")):
    """Start the API server with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API server on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    subprocess.run(args)


if __name__ == "__main__":
    app()
