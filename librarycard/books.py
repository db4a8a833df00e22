"""Books: catalogue, the checkout state machine and per-location ratings."""

import json
import logging
import sqlite3
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from librarycard.config import settings
from librarycard.database import parse_timestamp, timestamp
from librarycard.exceptions import InvalidRequest, PermissionDenied
from librarycard.permissions import has_book_access, has_shelf_access, is_admin

logger = logging.getLogger(__name__)

AVAILABLE = "available"
CHECKED_OUT = "checked_out"

JSON_LIST_FIELDS = ("authors", "categories", "tags", "subjects", "enhanced_genres")

# A rating counts toward a book's library average only if the rater can
# reach the book's location (or added the book). Expects aliases b, l, br.
_RATER_HAS_ACCESS = """
    (br.user_id = b.added_by
     OR br.user_id = l.owner_id
     OR EXISTS (SELECT 1 FROM location_members lm2
                WHERE lm2.location_id = l.id AND lm2.user_id = br.user_id))
"""

_BOOK_SELECT = f"""
    SELECT b.*,
           s.name AS shelf_name,
           s.location_id AS location_id,
           l.name AS location_name,
           ur.rating AS user_rating,
           ur.review_text AS user_review,
           (SELECT AVG(CAST(br.rating AS REAL)) FROM book_ratings br
            WHERE br.book_id = b.id AND {_RATER_HAS_ACCESS}) AS average_rating,
           (SELECT COUNT(*) FROM book_ratings br
            WHERE br.book_id = b.id AND {_RATER_HAS_ACCESS}) AS library_rating_count,
           co.first_name AS checked_out_by_name
    FROM books b
    LEFT JOIN shelves s ON b.shelf_id = s.id
    LEFT JOIN locations l ON s.location_id = l.id
    LEFT JOIN book_ratings ur ON ur.book_id = b.id AND ur.user_id = ?
    LEFT JOIN users co ON co.id = b.checked_out_by
"""

_USER_CAN_SEE = """
    (b.added_by = ? OR l.owner_id = ?
     OR EXISTS (SELECT 1 FROM location_members lm
                WHERE lm.location_id = l.id AND lm.user_id = ?))
"""


def encode_list(value: Any) -> Optional[str]:
    """Store list-ish values as JSON text. Strings are assumed to be JSON already."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(list(value))


def decode_list(value: Optional[str]) -> List[Any]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        return [value]
    return parsed if isinstance(parsed, list) else [parsed]


def _book_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    book = dict(row)
    for key in JSON_LIST_FIELDS:
        book[key] = decode_list(book.get(key))
    book["status"] = book.get("status") or AVAILABLE
    # The stored rating_count is refreshed on every rating; the live count wins
    book["rating_count"] = book.pop("library_rating_count", None) or 0
    return book


def list_books(conn: sqlite3.Connection, user_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        f"{_BOOK_SELECT} WHERE {_USER_CAN_SEE} ORDER BY b.created_at DESC, b.id DESC",
        (user_id, user_id, user_id, user_id),
    ).fetchall()
    return [_book_from_row(row) for row in rows]


def get_book(conn: sqlite3.Connection, user_id: str, book_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        f"{_BOOK_SELECT} WHERE b.id = ? AND {_USER_CAN_SEE}",
        (user_id, book_id, user_id, user_id, user_id),
    ).fetchone()
    return _book_from_row(row) if row else None


def create_book(conn: sqlite3.Connection, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    if not data.get("title"):
        raise InvalidRequest("Book title is required")
    shelf_id = data.get("shelf_id")
    if shelf_id is not None and not has_shelf_access(conn, user_id, shelf_id):
        raise PermissionDenied("Access denied")

    cursor = conn.execute(
        """
        INSERT INTO books (
            isbn, title, authors, description, thumbnail, published_date, categories,
            shelf_id, tags, added_by, status, created_at,
            extended_description, subjects, page_count, google_average_rating, google_ratings_count,
            publisher_info, open_library_key, enhanced_genres, series, series_number, rating_count
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
        """,
        (
            data.get("isbn"),
            data["title"],
            encode_list(data.get("authors") or []),
            data.get("description"),
            data.get("thumbnail"),
            data.get("published_date"),
            encode_list(data.get("categories") or []),
            shelf_id,
            encode_list(data.get("tags") or []),
            user_id,
            AVAILABLE,
            timestamp(),
            data.get("extended_description"),
            encode_list(data.get("subjects")),
            data.get("page_count"),
            data.get("google_average_rating"),
            data.get("google_ratings_count"),
            data.get("publisher_info"),
            data.get("open_library_key"),
            encode_list(data.get("enhanced_genres")),
            data.get("series"),
            data.get("series_number"),
        ),
    )
    conn.commit()
    logger.info("User %s added book %s (%s)", user_id, cursor.lastrowid, data.get("isbn") or "no isbn")
    return get_book(conn, user_id, cursor.lastrowid)


def update_book(
    conn: sqlite3.Connection,
    user_id: str,
    book_id: int,
    shelf_id: Optional[int] = None,
    tags: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """Move a book to another shelf and/or replace its tags."""
    if not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Access denied")
    if shelf_id is not None and not has_shelf_access(conn, user_id, shelf_id):
        raise PermissionDenied("Access denied")

    if shelf_id is not None:
        conn.execute("UPDATE books SET shelf_id = ? WHERE id = ?", (shelf_id, book_id))
    if tags is not None:
        conn.execute("UPDATE books SET tags = ? WHERE id = ?", (encode_list(tags), book_id))
    conn.commit()
    return get_book(conn, user_id, book_id)


def purge_books(conn: sqlite3.Connection, book_ids: List[int]) -> None:
    """Delete books and their ratings. The caller commits."""
    for book_id in book_ids:
        conn.execute("DELETE FROM book_ratings WHERE book_id = ?", (book_id,))
        conn.execute("DELETE FROM books WHERE id = ?", (book_id,))


def delete_book(conn: sqlite3.Connection, user_id: str, book_id: int) -> Dict[str, Any]:
    if not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Access denied")
    purge_books(conn, [book_id])
    conn.commit()
    logger.info("User %s deleted book %s", user_id, book_id)
    return {"success": True}


# ------------------------- Checkout state machine ------------------------- #
def checkout_book(
    conn: sqlite3.Connection,
    user_id: str,
    book_id: int,
    due_date: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """available -> checked_out"""
    if not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Book not found or access denied")

    book = conn.execute("SELECT status FROM books WHERE id = ?", (book_id,)).fetchone()
    if book["status"] == CHECKED_OUT:
        raise InvalidRequest("Book is already checked out")

    if due_date:
        try:
            due = parse_timestamp(due_date).strftime("%Y-%m-%d %H:%M:%S")
        except ValueError as e:
            raise InvalidRequest("Invalid due date") from e
    else:
        due = timestamp(timedelta(days=settings.checkout_days))

    now = timestamp()
    # Guarded on status so two concurrent checkouts cannot both succeed
    cursor = conn.execute(
        """
        UPDATE books SET status = ?, checked_out_by = ?, checked_out_date = ?, due_date = ?
        WHERE id = ? AND COALESCE(status, 'available') != ?
        """,
        (CHECKED_OUT, user_id, now, due, book_id, CHECKED_OUT),
    )
    if cursor.rowcount == 0:
        raise InvalidRequest("Book is already checked out")
    conn.execute(
        """
        INSERT INTO book_checkout_history (book_id, user_id, action, action_date, due_date, notes, created_at)
        VALUES (?, ?, 'checkout', ?, ?, ?, ?)
        """,
        (book_id, user_id, now, due, notes, now),
    )
    conn.commit()
    logger.info("User %s checked out book %s until %s", user_id, book_id, due)
    return {"success": True, "message": "Book checked out successfully", "due_date": due}


def checkin_book(conn: sqlite3.Connection, user_id: str, book_id: int) -> Dict[str, Any]:
    """checked_out -> available; only the borrower or an admin may return a book."""
    if not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Book not found or access denied")

    book = conn.execute("SELECT status, checked_out_by FROM books WHERE id = ?", (book_id,)).fetchone()
    if book["status"] != CHECKED_OUT:
        raise InvalidRequest("Book is not currently checked out")
    if book["checked_out_by"] != user_id and not is_admin(conn, user_id):
        raise PermissionDenied("You can only check in books that you have checked out")

    now = timestamp()
    conn.execute(
        """
        UPDATE books SET status = ?, checked_out_by = NULL, checked_out_date = NULL, due_date = NULL
        WHERE id = ?
        """,
        (AVAILABLE, book_id),
    )
    conn.execute(
        """
        INSERT INTO book_checkout_history (book_id, user_id, action, action_date, created_at)
        VALUES (?, ?, 'return', ?, ?)
        """,
        (book_id, user_id, now, now),
    )
    conn.commit()
    logger.info("User %s checked in book %s", user_id, book_id)
    return {"success": True, "message": "Book checked in successfully"}


def checkout_history(conn: sqlite3.Connection, user_id: str) -> List[Dict[str, Any]]:
    """Admins see every entry; everyone else sees only their own."""
    query = """
        SELECT ch.*,
               b.title AS book_title,
               b.authors AS book_authors,
               b.isbn AS book_isbn,
               l.name AS location_name,
               u.first_name AS user_name,
               u.email AS user_email
        FROM book_checkout_history ch
        LEFT JOIN books b ON ch.book_id = b.id
        LEFT JOIN shelves s ON b.shelf_id = s.id
        LEFT JOIN locations l ON s.location_id = l.id
        LEFT JOIN users u ON ch.user_id = u.id
    """
    if is_admin(conn, user_id):
        rows = conn.execute(query + " ORDER BY ch.action_date DESC, ch.id DESC").fetchall()
    else:
        rows = conn.execute(
            query + " WHERE ch.user_id = ? ORDER BY ch.action_date DESC, ch.id DESC", (user_id,)
        ).fetchall()

    history = []
    for row in rows:
        entry = dict(row)
        entry["book_authors"] = decode_list(entry.get("book_authors"))
        history.append(entry)
    return history


# ------------------------- Ratings ------------------------- #
def _library_rating(conn: sqlite3.Connection, book_id: int) -> Dict[str, Any]:
    row = conn.execute(
        f"""
        SELECT AVG(CAST(br.rating AS REAL)) AS average_rating, COUNT(br.id) AS rating_count
        FROM book_ratings br
        JOIN books b ON br.book_id = b.id
        LEFT JOIN shelves s ON b.shelf_id = s.id
        LEFT JOIN locations l ON s.location_id = l.id
        WHERE br.book_id = ? AND {_RATER_HAS_ACCESS}
        """,
        (book_id,),
    ).fetchone()
    return {"average_rating": row["average_rating"], "rating_count": row["rating_count"] or 0}


def rate_book(
    conn: sqlite3.Connection,
    user_id: str,
    book_id: int,
    rating: Any,
    review_text: Optional[str] = None,
) -> Dict[str, Any]:
    """Set the caller's 1-5 rating; a rating of 0 removes it."""
    if isinstance(rating, float) and rating.is_integer():
        rating = int(rating)
    if isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 5:
        raise InvalidRequest("Rating must be an integer between 0 (to delete) and 5")

    book = conn.execute("SELECT id, title FROM books WHERE id = ?", (book_id,)).fetchone()
    if not book or not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Book not found or access denied")

    now = timestamp()
    if rating == 0:
        conn.execute("DELETE FROM book_ratings WHERE book_id = ? AND user_id = ?", (book_id, user_id))
    else:
        conn.execute(
            """
            INSERT INTO book_ratings (book_id, user_id, rating, review_text, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(book_id, user_id) DO UPDATE SET
                rating = excluded.rating,
                review_text = excluded.review_text,
                updated_at = excluded.updated_at
            """,
            (book_id, user_id, rating, review_text or None, now, now),
        )

    stats = _library_rating(conn, book_id)
    conn.execute(
        "UPDATE books SET rating_count = ?, rating_updated_at = ? WHERE id = ?",
        (stats["rating_count"], now, book_id),
    )
    conn.commit()
    return {
        "message": "Rating deleted successfully" if rating == 0 else "Book rated successfully",
        "book_id": book_id,
        "book_title": book["title"],
        "user_rating": rating or None,
        "average_rating": stats["average_rating"],
        "rating_count": stats["rating_count"],
    }


def get_book_rating(conn: sqlite3.Connection, user_id: str, book_id: int) -> Dict[str, Any]:
    if not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Book not found or access denied")

    row = conn.execute(
        """
        SELECT s.location_id, br.rating, br.review_text
        FROM books b
        LEFT JOIN shelves s ON b.shelf_id = s.id
        LEFT JOIN book_ratings br ON br.book_id = b.id AND br.user_id = ?
        WHERE b.id = ?
        """,
        (user_id, book_id),
    ).fetchone()

    reviews = conn.execute(
        f"""
        SELECT br.rating, br.review_text, br.created_at, br.updated_at, u.first_name AS user_name
        FROM book_ratings br
        JOIN books b ON br.book_id = b.id
        JOIN users u ON br.user_id = u.id
        LEFT JOIN shelves s ON b.shelf_id = s.id
        LEFT JOIN locations l ON s.location_id = l.id
        WHERE br.book_id = ? AND {_RATER_HAS_ACCESS}
          AND br.review_text IS NOT NULL AND br.review_text != ''
        ORDER BY br.created_at DESC, br.id DESC
        """,
        (book_id,),
    ).fetchall()

    stats = _library_rating(conn, book_id)
    return {
        "book_id": book_id,
        "user_rating": row["rating"],
        "user_review": row["review_text"],
        "average_rating": stats["average_rating"],
        "rating_count": stats["rating_count"],
        "location_id": row["location_id"],
        "all_ratings": [dict(review) for review in reviews],
    }
