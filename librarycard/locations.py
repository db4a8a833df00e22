"""Locations, their shelves, and membership."""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from librarycard.books import purge_books
from librarycard.database import timestamp
from librarycard.exceptions import InvalidRequest, PermissionDenied
from librarycard.permissions import (
    has_location_access,
    is_admin,
    is_location_member,
    is_location_owner,
    shelf_location_id,
)

logger = logging.getLogger(__name__)

DEFAULT_SHELVES = ["my first shelf"]


def list_locations(conn: sqlite3.Connection, user_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT DISTINCT l.* FROM locations l
        LEFT JOIN location_members lm ON l.id = lm.location_id
        WHERE l.owner_id = ? OR lm.user_id = ?
        ORDER BY l.created_at DESC, l.id DESC
        """,
        (user_id, user_id),
    ).fetchall()
    return [dict(row) for row in rows]


def get_location(conn: sqlite3.Connection, location_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM locations WHERE id = ?", (location_id,)).fetchone()
    return dict(row) if row else None


def create_location(
    conn: sqlite3.Connection, user_id: str, name: str, description: Optional[str] = None
) -> Dict[str, Any]:
    if not is_admin(conn, user_id):
        raise PermissionDenied("Admin privileges required to create locations")
    if not name or not name.strip():
        raise InvalidRequest("Location name is required")

    now = timestamp()
    cursor = conn.execute(
        "INSERT INTO locations (name, description, owner_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (name.strip(), description, user_id, now, now),
    )
    location_id = cursor.lastrowid
    for shelf_name in DEFAULT_SHELVES:
        conn.execute(
            "INSERT INTO shelves (name, location_id, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (shelf_name, location_id, now, now),
        )
    conn.commit()
    logger.info("User %s created location %s", user_id, location_id)
    return get_location(conn, location_id)


def _require_owning_admin(conn: sqlite3.Connection, user_id: str, location_id: int, action: str) -> None:
    if not is_admin(conn, user_id):
        raise PermissionDenied(f"Admin privileges required to {action} locations")
    if not is_location_owner(conn, user_id, location_id):
        raise PermissionDenied("Access denied")


def update_location(
    conn: sqlite3.Connection,
    user_id: str,
    location_id: Optional[int],
    name: str,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    if location_id is None:
        raise InvalidRequest("Location ID is required")
    _require_owning_admin(conn, user_id, location_id, "update")
    if not name or not name.strip():
        raise InvalidRequest("Location name is required")

    conn.execute(
        "UPDATE locations SET name = ?, description = ?, updated_at = ? WHERE id = ?",
        (name.strip(), description, timestamp(), location_id),
    )
    conn.commit()
    return get_location(conn, location_id)


def delete_location(conn: sqlite3.Connection, user_id: str, location_id: Optional[int]) -> Dict[str, Any]:
    """Delete a location together with its shelves, books, members and invitations."""
    if location_id is None:
        raise InvalidRequest("Location ID is required")
    _require_owning_admin(conn, user_id, location_id, "delete")

    book_ids = [
        row["id"]
        for row in conn.execute(
            "SELECT b.id FROM books b JOIN shelves s ON b.shelf_id = s.id WHERE s.location_id = ?",
            (location_id,),
        )
    ]
    purge_books(conn, book_ids)
    conn.execute("DELETE FROM shelves WHERE location_id = ?", (location_id,))
    conn.execute("DELETE FROM location_members WHERE location_id = ?", (location_id,))
    conn.execute("DELETE FROM location_invitations WHERE location_id = ?", (location_id,))
    conn.execute("DELETE FROM locations WHERE id = ?", (location_id,))
    conn.commit()
    logger.info("User %s deleted location %s (%d books)", user_id, location_id, len(book_ids))
    return {"success": True}


def leave_location(conn: sqlite3.Connection, user_id: str, location_id: int) -> Dict[str, Any]:
    """Drop the caller's membership; their own books in that location go with it."""
    if not is_location_member(conn, user_id, location_id):
        raise PermissionDenied("You are not a member of this location")

    memberships = conn.execute(
        "SELECT COUNT(*) AS n FROM location_members WHERE user_id = ?", (user_id,)
    ).fetchone()["n"]
    if memberships <= 1:
        raise InvalidRequest("You cannot leave your last location. You need access to at least one library.")

    book_ids = [
        row["id"]
        for row in conn.execute(
            """
            SELECT b.id FROM books b JOIN shelves s ON b.shelf_id = s.id
            WHERE s.location_id = ? AND b.added_by = ?
            """,
            (location_id, user_id),
        )
    ]
    purge_books(conn, book_ids)
    conn.execute("DELETE FROM location_members WHERE location_id = ? AND user_id = ?", (location_id, user_id))
    conn.commit()
    logger.info("User %s left location %s, removing %d books", user_id, location_id, len(book_ids))
    return {
        "success": True,
        "message": "Successfully left the location. Your books from this location have been removed.",
    }


# ------------------------- Shelves ------------------------- #
def list_shelves(conn: sqlite3.Connection, user_id: str, location_id: int) -> List[Dict[str, Any]]:
    if not has_location_access(conn, user_id, location_id):
        raise PermissionDenied("Access denied")
    rows = conn.execute(
        "SELECT * FROM shelves WHERE location_id = ? ORDER BY name", (location_id,)
    ).fetchall()
    return [dict(row) for row in rows]


def get_shelf(conn: sqlite3.Connection, shelf_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM shelves WHERE id = ?", (shelf_id,)).fetchone()
    return dict(row) if row else None


def _insert_shelf(conn: sqlite3.Connection, location_id: int, name: str) -> int:
    now = timestamp()
    cursor = conn.execute(
        "INSERT INTO shelves (name, location_id, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (name.strip(), location_id, now, now),
    )
    return cursor.lastrowid


def create_shelf(conn: sqlite3.Connection, user_id: str, location_id: int, name: str) -> Dict[str, Any]:
    if not is_admin(conn, user_id):
        raise PermissionDenied("Admin privileges required to create shelves")
    if not has_location_access(conn, user_id, location_id):
        raise PermissionDenied("Access denied")
    if not name or not name.strip():
        raise InvalidRequest("Shelf name is required")

    shelf_id = _insert_shelf(conn, location_id, name)
    conn.commit()
    return get_shelf(conn, shelf_id)


def _require_shelf_admin(conn: sqlite3.Connection, user_id: str, shelf_id: int, action: str) -> int:
    if not is_admin(conn, user_id):
        raise PermissionDenied(f"Admin privileges required to {action} shelves")
    location_id = shelf_location_id(conn, shelf_id)
    if location_id is None or not has_location_access(conn, user_id, location_id):
        raise PermissionDenied("Access denied")
    return location_id


def update_shelf(conn: sqlite3.Connection, user_id: str, shelf_id: int, name: str) -> Dict[str, Any]:
    _require_shelf_admin(conn, user_id, shelf_id, "update")
    if not name or not name.strip():
        raise InvalidRequest("Shelf name is required")
    conn.execute(
        "UPDATE shelves SET name = ?, updated_at = ? WHERE id = ?", (name.strip(), timestamp(), shelf_id)
    )
    conn.commit()
    return get_shelf(conn, shelf_id)


def delete_shelf(
    conn: sqlite3.Connection,
    user_id: str,
    shelf_id: int,
    target_shelf_id: Optional[int] = None,
    create_new_shelf: Optional[str] = None,
    confirm_delete_books: bool = False,
) -> Dict[str, Any]:
    """Delete a shelf, deciding what happens to the books on it.

    Books on a shelf are never silently lost: they move to ``target_shelf_id``
    (or a newly created shelf when this is the location's last one), or are
    deleted only with ``confirm_delete_books`` on the last shelf.
    """
    location_id = _require_shelf_admin(conn, user_id, shelf_id, "delete")

    book_count = conn.execute(
        "SELECT COUNT(*) AS n FROM books WHERE shelf_id = ?", (shelf_id,)
    ).fetchone()["n"]
    total_shelves = conn.execute(
        "SELECT COUNT(*) AS n FROM shelves WHERE location_id = ?", (location_id,)
    ).fetchone()["n"]

    if book_count > 0 and total_shelves == 1:
        if create_new_shelf and create_new_shelf.strip():
            new_shelf_id = _insert_shelf(conn, location_id, create_new_shelf)
            conn.execute("UPDATE books SET shelf_id = ? WHERE shelf_id = ?", (new_shelf_id, shelf_id))
        elif confirm_delete_books:
            book_ids = [row["id"] for row in conn.execute("SELECT id FROM books WHERE shelf_id = ?", (shelf_id,))]
            purge_books(conn, book_ids)
        else:
            raise InvalidRequest(
                "This is the last shelf in the location. Deleting it will also delete all books in the location.",
                {
                    "bookCount": book_count,
                    "isLastShelf": True,
                    "warningMessage": (
                        f"Deleting this shelf will permanently delete {book_count} book(s) from the location. "
                        "You can either create a new shelf to move the books to, or confirm deletion of all books."
                    ),
                },
            )
    elif book_count > 0:
        if not target_shelf_id:
            available = conn.execute(
                "SELECT id, name FROM shelves WHERE location_id = ? AND id != ? ORDER BY name",
                (location_id, shelf_id),
            ).fetchall()
            raise InvalidRequest(
                "Shelf contains books. Please select a target shelf to move them to.",
                {
                    "bookCount": book_count,
                    "availableShelves": [dict(row) for row in available],
                    "isLastShelf": False,
                },
            )
        if target_shelf_id == shelf_id or shelf_location_id(conn, target_shelf_id) != location_id:
            raise InvalidRequest("Target shelf must be another shelf in the same location")
        conn.execute("UPDATE books SET shelf_id = ? WHERE shelf_id = ?", (target_shelf_id, shelf_id))

    conn.execute("DELETE FROM shelves WHERE id = ?", (shelf_id,))
    conn.commit()
    logger.info("User %s deleted shelf %s (%d books affected)", user_id, shelf_id, book_count)
    return {"success": True}
