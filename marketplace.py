import asyncio
import logging
import math
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Union

from werkzeug.security import check_password_hash, generate_password_hash

from book import Book, Category, ExternalBook
from config import settings
from database import get_db_connection, initialize_database, resolve_database_file
from google_books_service import ExternalServiceError, GoogleBooksService
from rental import MAX_RENTAL_DURATION, Rental, compute_return_date, format_timestamp
from user import USER_TYPES, User

logger = logging.getLogger(__name__)

BOOK_SELECT = """
    SELECT b.*, c.name AS category_name
    FROM books b
    LEFT JOIN categories c ON b.category_id = c.id
"""


class MarketplaceError(Exception):
    """Base class for marketplace failures."""


class ValidationError(MarketplaceError, ValueError):
    """A required field is missing or malformed. Raised before any write."""


class DuplicateUsernameError(MarketplaceError, ValueError):
    pass


class AuthenticationError(MarketplaceError):
    pass


class BookNotFoundError(MarketplaceError, LookupError):
    pass


class StoreError(MarketplaceError):
    """Any other failure of the relational store."""


@dataclass
class SearchResult:
    """One search hit, tagged with where it came from."""
    LOCAL = "local"
    EXTERNAL = "external"

    source: str
    book: Union[Book, ExternalBook]

    @property
    def is_local(self) -> bool:
        return self.source == self.LOCAL


class Marketplace:
    """Users, listings and rentals of the book rental marketplace."""

    def __init__(self, db_file: Optional[str] = None, google_books: Optional[GoogleBooksService] = None) -> None:
        self.db_file = resolve_database_file(db_file)
        initialize_database(self.db_file)  # Ensure tables and seed categories exist
        if google_books is not None:
            self.google_books: Optional[GoogleBooksService] = google_books
        else:
            self.google_books = GoogleBooksService() if settings.enable_google_books else None

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = get_db_connection(self.db_file)
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Store error: {e}")
            raise StoreError(str(e)) from e
        except OverflowError as e:
            # Integers beyond SQLite's 64-bit range
            raise ValidationError(f"Value out of range: {e}") from e
        finally:
            conn.close()

    # ------------------------- Accounts ------------------------- #
    def register(self, username: str, password: str, user_type: str) -> User:
        """Create an account. The password is stored as a salted hash, never verbatim."""
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("Username is required.")
        if not isinstance(password, str):
            raise ValidationError("Password is required.")
        if user_type not in USER_TYPES:
            raise ValidationError(f"userType must be one of: {', '.join(USER_TYPES)}.")

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (username, password, user_type) VALUES (?, ?, ?)",
                    (username, generate_password_hash(password), user_type),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise DuplicateUsernameError(f"Username {username!r} is already taken.") from e
            user = User(id=cursor.lastrowid, username=username, user_type=user_type)
        logger.info(f"Registered {user_type} {username!r} with id {user.id}")
        return user

    def login(self, username: str, password: str) -> User:
        """Return the user whose username and password both match, else raise AuthenticationError."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, username, password, user_type FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        if row is None or not isinstance(password, str) or not check_password_hash(row["password"], password):
            raise AuthenticationError("Invalid credentials")
        return User.from_row(row)

    # ------------------------- Catalogue ------------------------- #
    def list_categories(self) -> List[Category]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, name FROM categories ORDER BY id").fetchall()
        return [Category.from_row(row) for row in rows]

    def list_book(self, *, title: Any, renter_id: Any, rental_price: Any, rental_duration: Any,
                  category_id: Any, google_books_id: Optional[str] = None, authors: Optional[str] = None,
                  description: Optional[str] = None, image_url: Optional[str] = None) -> Book:
        """List a book for rent on behalf of a renter.

        Every field is validated before the insert, so a rejected listing
        never leaves a row behind. renter_id is taken at face value.
        """
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title is required.")
        book = Book(
            title=title,
            google_books_id=google_books_id,
            authors=authors or "Unknown",
            description=description,
            image_url=image_url,
            renter_id=self._parse_id(renter_id, "renterId"),
            rental_price=self._parse_price(rental_price),
            rental_duration=self._parse_duration(rental_duration),
            category_id=self._parse_id(category_id, "categoryId"),
        )

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO books (google_books_id, title, authors, description, image_url,
                                   renter_id, rental_price, rental_duration, category_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (book.google_books_id, book.title, book.authors, book.description, book.image_url,
                 book.renter_id, book.rental_price, book.rental_duration, book.category_id),
            )
            conn.commit()
            book.id = cursor.lastrowid
            category = conn.execute("SELECT name FROM categories WHERE id = ?", (book.category_id,)).fetchone()
            book.category_name = category["name"] if category else None
        logger.info(f"Renter {book.renter_id} listed book {book.id}: {book.title!r}")
        return book

    def find_book(self, book_id: int) -> Optional[Book]:
        with self._connect() as conn:
            row = conn.execute(BOOK_SELECT + " WHERE b.id = ?", (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def list_books(self, query: Optional[str] = None, min_price: Optional[float] = None,
                   max_price: Optional[float] = None, category_id: Optional[int] = None) -> List[Book]:
        """Browse listed books; every filter is optional and bounds are inclusive."""
        clauses: List[str] = []
        params: List[Any] = []
        if query and query.strip():
            clauses.append("(b.title LIKE ? ESCAPE '\\' OR b.authors LIKE ? ESCAPE '\\')")
            pattern = self._like_pattern(query.strip())
            params.extend([pattern, pattern])
        if min_price is not None:
            clauses.append("b.rental_price >= ?")
            params.append(min_price)
        if max_price is not None:
            clauses.append("b.rental_price <= ?")
            params.append(max_price)
        if category_id is not None:
            clauses.append("b.category_id = ?")
            params.append(category_id)

        sql = BOOK_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY b.id"

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Book.from_row(row) for row in rows]

    def search_local(self, query: str) -> List[Book]:
        """Books whose title or authors contain the query, ignoring case."""
        pattern = self._like_pattern(query)
        with self._connect() as conn:
            rows = conn.execute(
                BOOK_SELECT + " WHERE b.title LIKE ? ESCAPE '\\' OR b.authors LIKE ? ESCAPE '\\' ORDER BY b.id",
                (pattern, pattern),
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    async def search(self, query: str) -> List[SearchResult]:
        """Local matches followed by the external provider's matches, without deduplication."""
        query = (query or "").strip()
        if not query:
            return []

        local = await asyncio.to_thread(self.search_local, query)
        results = [SearchResult(SearchResult.LOCAL, book) for book in local]

        if self.google_books is not None:
            try:
                external = await self.google_books.search_books(query)
            except ExternalServiceError:
                if not settings.search_degrade_on_provider_error:
                    raise
                logger.warning(f"Book provider failed for {query!r}; returning local results only")
                external = []
            results.extend(SearchResult(SearchResult.EXTERNAL, book) for book in external)
        return results

    # ------------------------- Rentals ------------------------- #
    def rent_book(self, book_id: Any, user_id: Any, now: Optional[datetime] = None) -> Rental:
        """Rent a book from now until now + the book's rental duration.

        Nothing stops the same book from being rented again, or a renter
        renting their own listing.
        """
        book_id = self._parse_id(book_id, "bookId")
        user_id = self._parse_id(user_id, "userId")
        book = self.find_book(book_id)
        if book is None:
            raise BookNotFoundError(f"Book {book_id} not found.")

        rental_date = now or datetime.now(timezone.utc)
        try:
            return_date = compute_return_date(rental_date, book.rental_duration)
        except OverflowError as e:
            raise ValidationError(f"Book {book_id} has a rental duration past the supported calendar.") from e
        rental = Rental(
            id=None,
            book_id=book_id,
            user_id=user_id,
            rental_date=format_timestamp(rental_date),
            return_date=format_timestamp(return_date),
        )
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO rentals (book_id, user_id, rental_date, return_date) VALUES (?, ?, ?, ?)",
                (rental.book_id, rental.user_id, rental.rental_date, rental.return_date),
            )
            conn.commit()
            rental.id = cursor.lastrowid
        logger.info(f"User {user_id} rented book {book_id} until {rental.return_date}")
        return rental

    def rental_history(self, user_id: int) -> List[Rental]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT r.*, b.title, b.authors, b.image_url, b.rental_price, b.rental_duration,
                       c.name AS category_name
                FROM rentals r
                JOIN books b ON r.book_id = b.id
                LEFT JOIN categories c ON b.category_id = c.id
                WHERE r.user_id = ?
                ORDER BY r.id
                """,
                (user_id,),
            ).fetchall()
        return [Rental.from_row(row) for row in rows]

    def recommendations(self, user_id: int, limit: Optional[int] = None) -> List[Book]:
        """A fresh random sample of books the user has not rented yet."""
        with self._connect() as conn:
            rows = conn.execute(
                BOOK_SELECT + """
                WHERE b.id NOT IN (SELECT book_id FROM rentals WHERE user_id = ?)
                ORDER BY RANDOM()
                LIMIT ?
                """,
                (user_id, limit or settings.recommendation_limit),
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _like_pattern(query: str) -> str:
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    @staticmethod
    def _parse_price(value: Any) -> float:
        if value is None or isinstance(value, bool):
            raise ValidationError("rentalPrice is required.")
        try:
            price = float(value)
        except (TypeError, ValueError):
            raise ValidationError("rentalPrice must be a number.") from None
        if not math.isfinite(price) or price < 0:
            raise ValidationError("rentalPrice must be a non-negative number.")
        return price

    @staticmethod
    def _parse_duration(value: Any) -> int:
        if value is None or isinstance(value, bool):
            raise ValidationError("rentalDuration is required.")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError("rentalDuration must be a whole number of days.") from None
        if not math.isfinite(number) or not number.is_integer() or number <= 0:
            raise ValidationError("rentalDuration must be a positive whole number of days.")
        if number > MAX_RENTAL_DURATION:
            raise ValidationError(f"rentalDuration must be at most {MAX_RENTAL_DURATION} days.")
        return int(number)

    @staticmethod
    def _parse_id(value: Any, name: str) -> int:
        if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{name} is required.")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be an integer id.") from None
