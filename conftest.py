import pytest

from book import ExternalBook
from marketplace import Marketplace


class FakeGoogleBooks:
    """In-memory stand-in for GoogleBooksService."""

    def __init__(self, books=None, error=None):
        self.books = list(books or [])
        self.error = error
        self.queries = []

    async def search_books(self, query, max_results=None):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.books)


@pytest.fixture
def fake_books():
    return FakeGoogleBooks(books=[
        ExternalBook(id="zyTCAlFPjgYC", title="The Google Story", authors="David A. Vise, Mark Malseed",
                     description="An inside look at Google.", image_url="http://books.google.com/thumb1"),
        ExternalBook(id="abc123", title="Dune", authors="Frank Herbert"),
    ])


@pytest.fixture
def market(tmp_path, fake_books):
    # Each test gets its own database file
    db_file = str(tmp_path / "market.db")
    return Marketplace(db_file=db_file, google_books=fake_books)


@pytest.fixture
def add_book(market):
    def _add(title="Dune", authors="Frank Herbert", rental_price=3.5, rental_duration=7,
             category_id=1, renter_id=1, **extra):
        return market.list_book(title=title, authors=authors, rental_price=rental_price,
                                rental_duration=rental_duration, category_id=category_id,
                                renter_id=renter_id, **extra)
    return _add
