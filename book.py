from __future__ import annotations

from typing import Any, Mapping


class Book:
    """A book listed for rent by a renter."""

    def __init__(self, title: str, rental_price: float, rental_duration: int, *, id: int | None = None,
                 google_books_id: str | None = None, authors: str | None = None, description: str | None = None,
                 image_url: str | None = None, renter_id: int | None = None, category_id: int | None = None,
                 category_name: str | None = None) -> None:
        self.id = id
        self.google_books_id = google_books_id
        self.title = title.strip()
        self.authors = authors
        self.description = description
        self.image_url = image_url
        self.renter_id = renter_id
        self.rental_price = rental_price
        self.rental_duration = rental_duration
        self.category_id = category_id
        # Joined from categories; not a stored column
        self.category_name = category_name

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.authors} ({self.rental_price:.2f} / {self.rental_duration} days)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "google_books_id": self.google_books_id,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "image_url": self.image_url,
            "renter_id": self.renter_id,
            "rental_price": self.rental_price,
            "rental_duration": self.rental_duration,
            "category_id": self.category_id,
            "category_name": self.category_name,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Book":
        keys = row.keys()
        return Book(
            id=row["id"],
            google_books_id=row["google_books_id"],
            title=row["title"],
            authors=row["authors"],
            description=row["description"],
            image_url=row["image_url"],
            renter_id=row["renter_id"],
            rental_price=row["rental_price"],
            rental_duration=row["rental_duration"],
            category_id=row["category_id"],
            category_name=row["category_name"] if "category_name" in keys else None,
        )


class ExternalBook:
    """Bibliographic summary returned by the external search provider.

    External books are not rentable until a renter lists them, so they carry
    no price, duration or category.
    """

    def __init__(self, id: str, title: str, authors: str = "Unknown", description: str | None = None,
                 image_url: str | None = None) -> None:
        self.id = id
        self.title = title
        self.authors = authors
        self.description = description
        self.image_url = image_url

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "image_url": self.image_url,
        }


class Category:
    def __init__(self, id: int, name: str) -> None:
        self.id = id
        self.name = name

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Category":
        return Category(id=row["id"], name=row["name"])
