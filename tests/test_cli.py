import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from main import app
from marketplace import Marketplace
from ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    db_file = str(tmp_path / "cli_test.db")
    monkeypatch.setenv("BOOKRENTAL_DB_FILE", db_file)
    # Restored on teardown even if --output changes it
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    return db_file


@pytest.fixture
def stocked(cli_db, fake_books):
    market = Marketplace(db_file=cli_db, google_books=fake_books)
    dune = market.list_book(title="Dune", authors="Frank Herbert", rental_price=3.5, rental_duration=7,
                            category_id=1, renter_id=1)
    cosmos = market.list_book(title="Cosmos", authors="Carl Sagan", rental_price=2, rental_duration=5,
                              category_id=3, renter_id=1)
    market.rent_book(dune.id, 2)
    return market, dune, cosmos


def test_init_db(cli_db):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert f"Database ready at {cli_db} with 5 categories." in result.stdout


def test_categories_plain(cli_db):
    result = runner.invoke(app, ["categories"])
    assert result.exit_code == 0
    assert "1 - Fiction" in result.stdout
    assert "5 - Biography" in result.stdout


def test_books_empty(cli_db):
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books found." in result.stdout


def test_books_with_filters(stocked):
    _, dune, cosmos = stocked
    result = runner.invoke(app, ["books", "--category", "3"])
    assert result.exit_code == 0
    assert f"#{cosmos.id} Cosmos by Carl Sagan - 2.00 for 5 days [Science]" in result.stdout
    assert "Dune" not in result.stdout


def test_books_json_output(stocked):
    _, dune, cosmos = stocked
    result = runner.invoke(app, ["--output", "json", "books", "--min-price", "3"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [b["id"] for b in payload] == [dune.id]
    assert payload[0]["category_name"] == "Fiction"


def test_history(stocked):
    _, dune, _ = stocked
    result = runner.invoke(app, ["history", "2"])
    assert result.exit_code == 0
    assert "Dune:" in result.stdout

    empty = runner.invoke(app, ["history", "3"])
    assert "No rentals found." in empty.stdout


def test_recommend_skips_rented(stocked):
    _, dune, cosmos = stocked
    result = runner.invoke(app, ["recommend", "2"])
    assert result.exit_code == 0
    assert "Cosmos" in result.stdout
    assert "Dune" not in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, cli_db):
    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "Starting API server on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "api:app" in args
    assert "--host" in args
    assert "--port" in args
    assert "--reload" not in args
