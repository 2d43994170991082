import importlib
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from config import settings
from google_books_service import ExternalServiceError
from rental import parse_timestamp


@pytest.fixture
def api_module(tmp_path, monkeypatch, fake_books):
    # Point a freshly reloaded api module at a per-test database
    monkeypatch.setenv("BOOKRENTAL_DB_FILE", str(tmp_path / "api_test.db"))

    import api as api_module
    importlib.reload(api_module)
    # Never reach the real provider from unit tests
    api_module.marketplace.google_books = fake_books
    return api_module


@pytest.fixture
def client(api_module):
    return TestClient(api_module.app)


@pytest.fixture
def renter(client):
    response = client.post("/api/users/register",
                           json={"username": "rita", "password": "pw", "userType": "renter"})
    assert response.status_code == 201
    return response.json()


def _list_book(client, renter_id, **overrides):
    payload = {
        "googleBooksId": "abc123",
        "title": "Dune",
        "authors": "Frank Herbert",
        "description": "Spice.",
        "imageUrl": "http://img/dune",
        "renterId": renter_id,
        "rentalPrice": 3.5,
        "rentalDuration": 7,
        "categoryId": 1,
    }
    payload.update(overrides)
    return client.post("/api/books", json=payload)


# ------------------------- Users ------------------------- #
def test_register_returns_public_fields(client):
    response = client.post("/api/users/register",
                           json={"username": "uma", "password": "pw", "userType": "user"})
    assert response.status_code == 201
    body = response.json()
    assert set(body) == {"id", "username", "userType"}
    assert body["username"] == "uma"
    assert body["userType"] == "user"


def test_register_duplicate_username(client, renter):
    response = client.post("/api/users/register",
                           json={"username": "rita", "password": "other", "userType": "user"})
    assert response.status_code == 400

    login = client.post("/api/users/login", json={"username": "rita", "password": "pw"})
    assert login.status_code == 200
    assert login.json()["userType"] == "renter"


def test_register_rejects_unknown_user_type(client):
    response = client.post("/api/users/register",
                           json={"username": "x", "password": "pw", "userType": "admin"})
    assert response.status_code == 422


def test_login(client, renter):
    response = client.post("/api/users/login", json={"username": "rita", "password": "pw"})
    assert response.status_code == 200
    assert response.json() == {"id": renter["id"], "username": "rita", "userType": "renter"}


@pytest.mark.parametrize("username,password", [("rita", "wrong"), ("ghost", "pw")])
def test_login_failure(client, renter, username, password):
    response = client.post("/api/users/login", json={"username": username, "password": password})
    assert response.status_code == 401


# ------------------------- Categories & books ------------------------- #
def test_get_categories(client):
    response = client.get("/api/categories")
    assert response.status_code == 200
    assert [c["name"] for c in response.json()] == ["Fiction", "Non-fiction", "Science", "History", "Biography"]


def test_add_book(client, renter):
    response = _list_book(client, renter["id"])
    assert response.status_code == 201
    body = response.json()
    assert body["id"] >= 1
    assert body["title"] == "Dune"
    assert body["googleBooksId"] == "abc123"
    assert body["renterId"] == renter["id"]
    assert body["rentalPrice"] == 3.5
    assert body["rentalDuration"] == 7
    assert body["categoryName"] == "Fiction"


@pytest.mark.parametrize("overrides", [
    {"rentalDuration": 0},
    {"rentalDuration": -1},
    {"rentalDuration": 1.5},
    {"rentalDuration": 36501},
    {"rentalDuration": 3_000_000},
    {"rentalDuration": 10**20},
    {"renterId": 10**20},
    {"rentalPrice": "abc"},
    {"rentalPrice": -0.01},
    {"renterId": None},
    {"categoryId": None},
])
def test_add_book_rejects_invalid_payload(client, renter, overrides):
    response = _list_book(client, renter["id"], **overrides)
    assert response.status_code == 422
    assert client.get("/api/books").json() == []


def test_add_book_requires_all_fields(client, renter):
    response = client.post("/api/books", json={"title": "Dune", "rentalPrice": 1, "rentalDuration": 3})
    assert response.status_code == 422
    assert client.get("/api/books").json() == []


def test_get_books_filters(client, renter):
    cheap = _list_book(client, renter["id"], title="Cheap", rentalPrice=1, categoryId=1).json()
    science = _list_book(client, renter["id"], title="Cosmos", rentalPrice=6, categoryId=3).json()

    all_books = client.get("/api/books", params={"query": "", "minPrice": 0, "maxPrice": 100, "category": ""})
    assert [b["id"] for b in all_books.json()] == [cheap["id"], science["id"]]

    by_price = client.get("/api/books", params={"minPrice": 2, "maxPrice": 6})
    assert [b["id"] for b in by_price.json()] == [science["id"]]

    by_category = client.get("/api/books", params={"category": "1"})
    assert [b["id"] for b in by_category.json()] == [cheap["id"]]
    assert by_category.json()[0]["categoryName"] == "Fiction"


def test_get_books_rejects_malformed_category(client):
    assert client.get("/api/books", params={"category": "fiction"}).status_code == 400


# ------------------------- Search ------------------------- #
def test_search_returns_tagged_local_and_external(client, renter, fake_books):
    local = _list_book(client, renter["id"], title="Unique Zephyr").json()
    _list_book(client, renter["id"], title="Unrelated")

    response = client.get("/api/search", params={"query": "zephyr"})
    assert response.status_code == 200
    results = response.json()

    local_hits = [r for r in results if r["source"] == "local"]
    external_hits = [r for r in results if r["source"] == "external"]
    assert [r["id"] for r in local_hits] == [local["id"]]
    assert local_hits[0]["categoryName"] == "Fiction"
    assert [r["id"] for r in external_hits] == ["zyTCAlFPjgYC", "abc123"]
    assert all(r["isGoogleBook"] for r in external_hits)
    assert external_hits[0]["imageUrl"] == "http://books.google.com/thumb1"
    assert results[0]["source"] == "local"


def test_search_requires_query(client):
    assert client.get("/api/search").status_code == 422


def test_search_provider_failure_is_500(client, renter, fake_books):
    _list_book(client, renter["id"], title="Zephyr")
    fake_books.error = ExternalServiceError("down")
    response = client.get("/api/search", params={"query": "Zephyr"})
    assert response.status_code == 500


def test_search_provider_failure_degrades_when_enabled(client, renter, fake_books, monkeypatch):
    local = _list_book(client, renter["id"], title="Zephyr").json()
    fake_books.error = ExternalServiceError("down")
    monkeypatch.setattr(settings, "search_degrade_on_provider_error", True)

    response = client.get("/api/search", params={"query": "Zephyr"})
    assert response.status_code == 200
    assert [(r["source"], r["id"]) for r in response.json()] == [("local", local["id"])]


# ------------------------- Rentals ------------------------- #
def test_rent_book_and_history(client, renter):
    book = _list_book(client, renter["id"], rentalDuration=7).json()
    reader = client.post("/api/users/register",
                         json={"username": "reader", "password": "pw", "userType": "user"}).json()

    response = client.post("/api/rentals", json={
        "bookId": book["id"],
        "userId": reader["id"],
        "rentalDate": "1999-01-01T00:00:00.000Z",
        "returnDate": "1999-01-02T00:00:00.000Z",
    })
    assert response.status_code == 201
    rental = response.json()
    assert rental["bookId"] == book["id"]
    assert rental["userId"] == reader["id"]
    # The server decides the dates
    assert not rental["rentalDate"].startswith("1999")
    assert rental["rentalDate"].endswith("Z")
    delta = parse_timestamp(rental["returnDate"]) - parse_timestamp(rental["rentalDate"])
    assert delta == timedelta(days=7)

    history = client.get(f"/api/rentals/{reader['id']}").json()
    assert len(history) == 1
    assert history[0]["id"] == rental["id"]
    assert history[0]["title"] == "Dune"
    assert history[0]["categoryName"] == "Fiction"
    assert history[0]["rentalPrice"] == 3.5


def test_rent_unknown_book(client):
    response = client.post("/api/rentals", json={"bookId": 404, "userId": 1})
    assert response.status_code == 404
    assert client.get("/api/rentals/1").json() == []


def test_rent_out_of_range_book_id(client):
    response = client.post("/api/rentals", json={"bookId": 10**20, "userId": 1})
    assert response.status_code == 422
    assert client.get("/api/rentals/1").json() == []


def test_recommendations_skip_rented_books(client, renter):
    ids = [_list_book(client, renter["id"], title=f"Book {i}").json()["id"] for i in range(7)]
    client.post("/api/rentals", json={"bookId": ids[0], "userId": 99})
    client.post("/api/rentals", json={"bookId": ids[1], "userId": 99})

    response = client.get("/api/recommendations/99")
    assert response.status_code == 200
    recommended = [b["id"] for b in response.json()]
    assert len(recommended) == 5
    assert not set(recommended) & {ids[0], ids[1]}


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["db"] is True
    assert body["services"] == {"google_books": True}
