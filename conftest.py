import pytest
from fastapi.testclient import TestClient

from librarycard import database
from librarycard.api import app
from librarycard.config import settings
from librarycard.routes.books import get_lookup_service
from librarycard.security import create_access_token, generate_id, hash_password
from librarycard.services.book_lookup import BookMetadata

PASSWORD = "Str0ng!Pass"


@pytest.fixture(autouse=True)
def db_file(tmp_path, monkeypatch, request):
    # Her test için benzersiz bir veritabanı dosyası oluştur
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    # E-postalar gerçek sağlayıcılara gitmez, yalnızca loglanır
    monkeypatch.setattr(settings, "resend_api_key", None)
    monkeypatch.setattr(settings, "postmark_api_token", None)
    database.initialize_database()
    yield path
    app.dependency_overrides.clear()


@pytest.fixture
def conn(db_file):
    connection = database.get_db_connection()
    yield connection
    connection.close()


@pytest.fixture
def client(db_file):
    return TestClient(app)


def make_user(conn, email, role="user", first_name="Test", verified=True, password=PASSWORD):
    user_id = generate_id()
    conn.execute(
        """
        INSERT INTO users (id, email, first_name, last_name, password_hash, auth_provider, email_verified, user_role)
        VALUES (?, ?, ?, 'User', ?, 'email', ?, ?)
        """,
        (user_id, email, first_name, hash_password(password), 1 if verified else 0, role),
    )
    conn.commit()
    return user_id


def auth_headers(user_id, email="someone@example.com"):
    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}


@pytest.fixture
def admin_user(conn):
    user_id = make_user(conn, "admin@example.com", role="admin", first_name="Ada")
    return {"id": user_id, "email": "admin@example.com", "headers": auth_headers(user_id, "admin@example.com")}


@pytest.fixture
def member_user(conn):
    user_id = make_user(conn, "member@example.com", first_name="Mel")
    return {"id": user_id, "email": "member@example.com", "headers": auth_headers(user_id, "member@example.com")}


@pytest.fixture
def outsider_user(conn):
    user_id = make_user(conn, "outsider@example.com", first_name="Otto")
    return {"id": user_id, "email": "outsider@example.com", "headers": auth_headers(user_id, "outsider@example.com")}


@pytest.fixture
def location(client, admin_user):
    """Yönetici tarafından oluşturulmuş, varsayılan rafıyla bir konum."""
    response = client.post("/api/locations", headers=admin_user["headers"], json={"name": "Home"})
    assert response.status_code == 200
    data = response.json()
    shelves = client.get(f"/api/locations/{data['id']}/shelves", headers=admin_user["headers"]).json()
    data["shelf_id"] = shelves[0]["id"]
    return data


def add_member(conn, location_id, user_id, invited_by=None):
    conn.execute(
        "INSERT INTO location_members (location_id, user_id, role, invited_by) VALUES (?, ?, 'member', ?)",
        (location_id, user_id, invited_by),
    )
    conn.commit()


class FakeLookup:
    """Ağ erişimi olmadan sabit meta veri döndüren arama servisi."""

    def __init__(self, books=None):
        self.books = books or {}
        self.calls = []

    async def lookup_isbn(self, isbn):
        self.calls.append(isbn)
        return self.books.get(isbn)


@pytest.fixture
def fake_lookup():
    lookup = FakeLookup(
        {
            "9780132350884": BookMetadata(
                isbn="9780132350884",
                title="Clean Code",
                authors=["Robert C. Martin"],
                published_date="2008-08-01",
                categories=["Computers"],
                page_count=464,
                source="google_books",
            )
        }
    )
    app.dependency_overrides[get_lookup_service] = lambda: lookup
    return lookup
