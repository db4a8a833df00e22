"""Role and access checks shared by the service modules.

A user can reach a location when they own it or hold a membership row;
shelves inherit that rule, and books additionally admit whoever added them.
"""

import sqlite3
from typing import Optional

from librarycard.exceptions import PermissionDenied

ADMIN_ROLE = "admin"
USER_ROLE = "user"


def get_role(conn: sqlite3.Connection, user_id: str) -> str:
    row = conn.execute("SELECT user_role FROM users WHERE id = ?", (user_id,)).fetchone()
    return (row["user_role"] if row else None) or USER_ROLE


def is_admin(conn: sqlite3.Connection, user_id: str) -> bool:
    return get_role(conn, user_id) == ADMIN_ROLE


def require_admin(conn: sqlite3.Connection, user_id: str, message: str = "Admin access required") -> None:
    if not is_admin(conn, user_id):
        raise PermissionDenied(message)


def is_location_owner(conn: sqlite3.Connection, user_id: str, location_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM locations WHERE id = ? AND owner_id = ?", (location_id, user_id)
    ).fetchone()
    return row is not None


def is_location_member(conn: sqlite3.Connection, user_id: str, location_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM location_members WHERE location_id = ? AND user_id = ?", (location_id, user_id)
    ).fetchone()
    return row is not None


def has_location_access(conn: sqlite3.Connection, user_id: str, location_id: int) -> bool:
    row = conn.execute(
        """
        SELECT 1 FROM locations l
        LEFT JOIN location_members lm ON lm.location_id = l.id AND lm.user_id = ?
        WHERE l.id = ? AND (l.owner_id = ? OR lm.user_id IS NOT NULL)
        """,
        (user_id, location_id, user_id),
    ).fetchone()
    return row is not None


def shelf_location_id(conn: sqlite3.Connection, shelf_id: int) -> Optional[int]:
    row = conn.execute("SELECT location_id FROM shelves WHERE id = ?", (shelf_id,)).fetchone()
    return row["location_id"] if row else None


def has_shelf_access(conn: sqlite3.Connection, user_id: str, shelf_id: int) -> bool:
    location_id = shelf_location_id(conn, shelf_id)
    return location_id is not None and has_location_access(conn, user_id, location_id)


def has_book_access(conn: sqlite3.Connection, user_id: str, book_id: int) -> bool:
    row = conn.execute(
        """
        SELECT 1 FROM books b
        LEFT JOIN shelves s ON b.shelf_id = s.id
        LEFT JOIN locations l ON s.location_id = l.id
        LEFT JOIN location_members lm ON lm.location_id = l.id AND lm.user_id = ?
        WHERE b.id = ? AND (b.added_by = ? OR l.owner_id = ? OR lm.user_id IS NOT NULL)
        """,
        (user_id, book_id, user_id, user_id),
    ).fetchone()
    return row is not None
