from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

# Longest rental period a listing may ask for (100 years)
MAX_RENTAL_DURATION = 36500


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Inverse of format_timestamp; naive values are taken as UTC."""
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def compute_return_date(rental_date: datetime, rental_duration: int) -> datetime:
    # Whole days of 86,400,000 ms in UTC, so DST never shifts the result.
    return rental_date + timedelta(days=rental_duration)


class Rental:
    """One user renting one book, optionally joined with the book details."""

    def __init__(self, id: int | None, book_id: int, user_id: int, rental_date: str, return_date: str,
                 title: str | None = None, authors: str | None = None, image_url: str | None = None,
                 rental_price: float | None = None, rental_duration: int | None = None,
                 category_name: str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.user_id = user_id
        self.rental_date = rental_date
        self.return_date = return_date
        # Book details, present when loaded through the history query
        self.title = title
        self.authors = authors
        self.image_url = image_url
        self.rental_price = rental_price
        self.rental_duration = rental_duration
        self.category_name = category_name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "rental_date": self.rental_date,
            "return_date": self.return_date,
            "title": self.title,
            "authors": self.authors,
            "image_url": self.image_url,
            "rental_price": self.rental_price,
            "rental_duration": self.rental_duration,
            "category_name": self.category_name,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Rental":
        keys = row.keys()
        return Rental(
            id=row["id"],
            book_id=row["book_id"],
            user_id=row["user_id"],
            rental_date=row["rental_date"],
            return_date=row["return_date"],
            **{k: row[k] for k in ("title", "authors", "image_url", "rental_price", "rental_duration",
                                  "category_name") if k in keys},
        )
