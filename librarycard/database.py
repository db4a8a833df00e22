import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from librarycard.config import settings

logger = logging.getLogger(__name__)

# Varsayılan veritabanı dosyası (LIBRARY_DB_FILE ile geçersiz kılınır).
# Testler bu modül değişkenini test başına geçici bir dosyaya yönlendirir.
DATABASE_FILE = settings.database_file

# SQLite'ın datetime('now') çıktısıyla aynı biçim; metin karşılaştırmaları bu sayede tutarlı
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def timestamp(offset: Optional[timedelta] = None) -> str:
    """UTC 'şimdi' (isteğe bağlı bir kaydırma ile) SQLite zaman damgası olarak."""
    now = datetime.now(timezone.utc)
    if offset is not None:
        now = now + offset
    return now.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Veritabanındaki zaman damgasını UTC datetime'a çevir. ISO biçimleri de kabul edilir."""
    if not value:
        return None
    text = str(value).strip().replace("T", " ").rstrip("Z")
    for fmt in (TIMESTAMP_FORMAT, "%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"Unrecognised timestamp: {value}")


def is_expired(value: Optional[str]) -> bool:
    expires = parse_timestamp(value)
    return expires is None or expires < datetime.now(timezone.utc)


def get_db_connection() -> sqlite3.Connection:
    """SQLite veritabanına bir bağlantı kurar."""
    conn = sqlite3.connect(DATABASE_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(conn: sqlite3.Connection) -> None:
    """Veritabanında mevcut değilse gerekli tabloları oluşturur."""
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT UNIQUE NOT NULL,
            first_name TEXT,
            last_name TEXT,
            password_hash TEXT,
            auth_provider TEXT NOT NULL DEFAULT 'email',
            email_verified INTEGER NOT NULL DEFAULT 0,
            email_verification_token TEXT,
            email_verification_expires TEXT,
            password_reset_token TEXT,
            password_reset_expires TEXT,
            user_role TEXT NOT NULL DEFAULT 'user',
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now'))
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS locations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            owner_id TEXT REFERENCES users(id),
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now'))
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS location_members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            location_id INTEGER NOT NULL REFERENCES locations(id),
            user_id TEXT NOT NULL REFERENCES users(id),
            role TEXT NOT NULL DEFAULT 'member',
            invited_by TEXT,
            joined_at TEXT DEFAULT (datetime('now')),
            UNIQUE (location_id, user_id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS shelves (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            location_id INTEGER NOT NULL REFERENCES locations(id),
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now'))
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            isbn TEXT,
            title TEXT NOT NULL,
            authors TEXT,
            description TEXT,
            thumbnail TEXT,
            published_date TEXT,
            categories TEXT,
            tags TEXT,
            shelf_id INTEGER REFERENCES shelves(id),
            added_by TEXT REFERENCES users(id),
            status TEXT NOT NULL DEFAULT 'available',
            checked_out_by TEXT,
            checked_out_date TEXT,
            due_date TEXT,
            created_at TEXT DEFAULT (datetime('now'))
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS book_checkout_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER NOT NULL,
            user_id TEXT,
            action TEXT NOT NULL CHECK(action IN ('checkout', 'return')),
            action_date TEXT DEFAULT (datetime('now')),
            due_date TEXT,
            notes TEXT,
            created_at TEXT DEFAULT (datetime('now'))
        )
    """)

    # Puanlar ve yorumlar; kullanıcı başına kitap başına tek kayıt
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS book_ratings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER NOT NULL REFERENCES books(id),
            user_id TEXT NOT NULL REFERENCES users(id),
            rating INTEGER NOT NULL CHECK(rating >= 1 AND rating <= 5),
            review_text TEXT,
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now')),
            UNIQUE (book_id, user_id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS location_invitations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            location_id INTEGER NOT NULL REFERENCES locations(id),
            invited_email TEXT NOT NULL,
            invitation_token TEXT UNIQUE NOT NULL,
            invited_by TEXT,
            expires_at TEXT NOT NULL,
            used_at TEXT,
            created_at TEXT DEFAULT (datetime('now'))
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS book_removal_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER,
            requester_id TEXT,
            reason TEXT NOT NULL,
            reason_details TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            reviewed_by TEXT,
            review_comment TEXT,
            created_at TEXT DEFAULT (datetime('now')),
            reviewed_at TEXT
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS signup_approval_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            password_hash TEXT,
            auth_provider TEXT NOT NULL DEFAULT 'email',
            status TEXT NOT NULL DEFAULT 'pending',
            requested_at TEXT DEFAULT (datetime('now')),
            reviewed_by TEXT,
            reviewed_at TEXT,
            review_comment TEXT,
            created_user_id TEXT
        )
    """)
    conn.commit()


# Sonradan eklenen kitap sütunları (zenginleştirme ve puan özetleri)
_BOOK_MIGRATIONS = {
    "extended_description": "TEXT",
    "subjects": "TEXT",
    "page_count": "INTEGER",
    "google_average_rating": "REAL",
    "google_ratings_count": "INTEGER",
    "publisher_info": "TEXT",
    "open_library_key": "TEXT",
    "enhanced_genres": "TEXT",
    "series": "TEXT",
    "series_number": "TEXT",
    "rating_count": "INTEGER DEFAULT 0",
    "rating_updated_at": "TEXT",
}


def migrate_tables(conn: sqlite3.Connection) -> None:
    """Eksik sütunları ekler ve indeksleri oluşturur. Tekrar çalıştırmak güvenlidir."""
    cursor = conn.cursor()
    cursor.execute("PRAGMA table_info(books)")
    columns = {row["name"] for row in cursor.fetchall()}
    for column, ddl in _BOOK_MIGRATIONS.items():
        if column not in columns:
            logger.info("Adding books.%s column", column)
            cursor.execute(f"ALTER TABLE books ADD COLUMN {column} {ddl}")

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_shelf ON books(shelf_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_added_by ON books(added_by)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_shelves_location ON shelves(location_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_members_user ON location_members(user_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_ratings_book ON book_ratings(book_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_history_book ON book_checkout_history(book_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_invitations_email ON location_invitations(invited_email)")
    conn.commit()


def initialize_database() -> None:
    """Tabloları oluşturur ve geçişleri çalıştırır."""
    conn = get_db_connection()
    try:
        create_tables(conn)
        migrate_tables(conn)
    finally:
        conn.close()
