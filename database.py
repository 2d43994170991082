import logging
import os
import sqlite3
from typing import Optional

from dotenv import load_dotenv

from config import settings

# Make sure .env is loaded before BOOKRENTAL_DB_FILE is read below.
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ["Fiction", "Non-fiction", "Science", "History", "Biography"]


def resolve_database_file(db_file: Optional[str] = None) -> str:
    """Pick the SQLite file to use.

    Priority:
    1) an explicit ``db_file`` argument
    2) BOOKRENTAL_DB_FILE from the environment, read at call time so tests can
       point a freshly reloaded API module at a temporary database
    3) the configured default (``settings.data_file``)
    """
    return db_file or os.environ.get("BOOKRENTAL_DB_FILE") or settings.data_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database with dict-like rows."""
    conn = sqlite3.connect(resolve_database_file(db_file))
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Creates the marketplace tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL,
                password TEXT NOT NULL,
                user_type TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL
            )
        """)

        # renter_id and category_id are soft references: foreign_keys stays off
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                google_books_id TEXT,
                title TEXT NOT NULL,
                authors TEXT,
                description TEXT,
                image_url TEXT,
                renter_id INTEGER,
                rental_price REAL NOT NULL,
                rental_duration INTEGER NOT NULL,
                category_id INTEGER,
                FOREIGN KEY (renter_id) REFERENCES users(id),
                FOREIGN KEY (category_id) REFERENCES categories(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rentals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                rental_date TEXT NOT NULL,
                return_date TEXT NOT NULL,
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_category_id ON books(category_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_rental_price ON books(rental_price)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_rentals_user_id ON rentals(user_id)")
        conn.commit()
    finally:
        conn.close()


def seed_categories(db_file: Optional[str] = None) -> int:
    """Insert the default categories; existing names are left alone.

    Returns the number of categories that were actually added.
    """
    conn = get_db_connection(db_file)
    try:
        before = conn.total_changes
        conn.executemany(
            "INSERT OR IGNORE INTO categories (name) VALUES (?)",
            [(name,) for name in DEFAULT_CATEGORIES],
        )
        conn.commit()
        added = conn.total_changes - before
    finally:
        conn.close()
    if added:
        logger.info("Seeded %d categories", added)
    return added


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the tables if needed and seed the default categories."""
    create_tables(db_file)
    seed_categories(db_file)
