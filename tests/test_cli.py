from unittest.mock import MagicMock

from typer.testing import CliRunner

import main
from conftest import make_user
from librarycard.services.book_lookup import BookLookupService
from main import app

runner = CliRunner()


def test_init_db(db_file):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert f"Database initialized at {db_file}" in result.stdout


def test_promote_and_demote(conn):
    user_id = make_user(conn, "reader@example.com")

    result = runner.invoke(app, ["promote", "Reader@Example.com"])
    assert result.exit_code == 0
    assert "is now admin" in result.stdout
    assert conn.execute("SELECT user_role FROM users WHERE id = ?", (user_id,)).fetchone()[0] == "admin"

    result = runner.invoke(app, ["demote", "reader@example.com"])
    assert result.exit_code == 0
    assert conn.execute("SELECT user_role FROM users WHERE id = ?", (user_id,)).fetchone()[0] == "user"


def test_promote_unknown_user(db_file):
    result = runner.invoke(app, ["promote", "ghost@example.com"])
    assert result.exit_code == 1
    assert "No user with email ghost@example.com" in result.stdout


def test_users_listing(conn):
    result = runner.invoke(app, ["users"])
    assert result.exit_code == 0
    assert "No users found" in result.stdout

    make_user(conn, "reader@example.com")
    result = runner.invoke(app, ["users"])
    assert result.exit_code == 0
    assert "reader@example.com" in result.stdout
    assert "1 users" in result.stdout


def test_cleanup_user_with_owner_transfer(conn):
    owner_id = make_user(conn, "owner@example.com", role="admin")
    heir_id = make_user(conn, "heir@example.com", role="admin")
    location_id = conn.execute(
        "INSERT INTO locations (name, owner_id) VALUES ('Attic', ?)", (owner_id,)
    ).lastrowid
    conn.commit()

    refused = runner.invoke(app, ["cleanup-user", "owner@example.com"])
    assert refused.exit_code == 1
    assert "Location ownership transfer required" in refused.stdout
    assert f"owns location {location_id}: Attic" in refused.stdout

    bad_flag = runner.invoke(app, ["cleanup-user", "owner@example.com", "--owner", "nonsense"])
    assert bad_flag.exit_code == 1

    result = runner.invoke(app, ["cleanup-user", "owner@example.com", "--owner", f"{location_id}={heir_id}"])
    assert result.exit_code == 0
    assert "User owner@example.com deleted successfully" in result.stdout
    assert conn.execute("SELECT owner_id FROM locations WHERE id = ?", (location_id,)).fetchone()[0] == heir_id


def test_backfill_dates(conn, monkeypatch):
    conn.execute("INSERT INTO books (title, authors, isbn) VALUES ('Dune', '[\"Frank Herbert\"]', '9780441013593')")
    conn.execute("INSERT INTO books (title, published_date) VALUES ('Dated', '1999')")
    conn.execute("INSERT INTO books (title) VALUES ('Obscure')")
    conn.commit()

    async def fake_find(self, title, authors, isbn=None):
        return "1965-08-01" if title == "Dune" else None

    monkeypatch.setattr(BookLookupService, "find_published_date", fake_find)
    result = runner.invoke(app, ["backfill-dates"])
    assert result.exit_code == 0
    assert "Found 2 books without a publication date" in result.stdout
    assert "Updated 1 books" in result.stdout
    assert conn.execute("SELECT published_date FROM books WHERE title = 'Dune'").fetchone()[0] == "1965-08-01"


def test_serve_runs_uvicorn(db_file, monkeypatch):
    run = MagicMock()
    monkeypatch.setattr(main.subprocess, "run", run)

    result = runner.invoke(app, ["serve", "--port", "9001", "--reload"])
    assert result.exit_code == 0
    args = run.call_args.args[0]
    assert "librarycard.api:app" in args
    assert args[args.index("--port") + 1] == "9001"
    assert "--reload" in args
