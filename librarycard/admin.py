"""Administration: signup approval, user management and analytics."""

import logging
import sqlite3
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from librarycard.books import decode_list
from librarycard.config import settings
from librarycard.database import timestamp
from librarycard.exceptions import InvalidRequest, NotFound
from librarycard.permissions import ADMIN_ROLE, USER_ROLE, require_admin
from librarycard.security import generate_id, generate_token
from librarycard.validators import normalize_email

logger = logging.getLogger(__name__)

VALID_ROLES = (ADMIN_ROLE, USER_ROLE)


# ------------------------- Signup approval ------------------------- #
def list_signup_requests(conn: sqlite3.Connection, admin_id: str) -> List[Dict[str, Any]]:
    require_admin(conn, admin_id)
    rows = conn.execute(
        """
        SELECT id, email, first_name, last_name, status, requested_at,
               reviewed_by, reviewed_at, review_comment, created_user_id
        FROM signup_approval_requests
        ORDER BY requested_at DESC, id DESC
        """
    ).fetchall()
    return [dict(row) for row in rows]


def _pending_signup(conn: sqlite3.Connection, request_id: int) -> sqlite3.Row:
    row = conn.execute(
        "SELECT * FROM signup_approval_requests WHERE id = ? AND status = 'pending'", (request_id,)
    ).fetchone()
    if not row:
        raise NotFound("Signup request not found or already processed")
    return row


def approve_signup_request(
    conn: sqlite3.Connection, admin_id: str, request_id: int, comment: Optional[str] = None
) -> Dict[str, Any]:
    """pending -> approved. Creates an unverified account and returns its verification token."""
    require_admin(conn, admin_id)
    request = _pending_signup(conn, request_id)

    if conn.execute("SELECT 1 FROM users WHERE email = ?", (request["email"],)).fetchone():
        raise InvalidRequest("User already exists")

    user_id = generate_id()
    verification_token = generate_token()
    now = timestamp()
    conn.execute(
        """
        INSERT INTO users (id, email, first_name, last_name, password_hash, auth_provider, email_verified,
                           email_verification_token, email_verification_expires, user_role, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, 'user', ?, ?)
        """,
        (
            user_id,
            request["email"],
            request["first_name"],
            request["last_name"],
            request["password_hash"],
            request["auth_provider"] or "email",
            verification_token,
            timestamp(timedelta(hours=settings.verification_hours)),
            now,
            now,
        ),
    )
    conn.execute(
        """
        UPDATE signup_approval_requests
        SET status = 'approved', reviewed_by = ?, reviewed_at = ?, review_comment = ?, created_user_id = ?
        WHERE id = ?
        """,
        (admin_id, now, comment, user_id, request_id),
    )
    conn.commit()
    logger.info("Admin %s approved signup request %s -> user %s", admin_id, request_id, user_id)
    return {
        "message": "Signup request approved successfully",
        "user_id": user_id,
        "email": request["email"],
        "first_name": request["first_name"],
        "verification_token": verification_token,
    }


def deny_signup_request(
    conn: sqlite3.Connection, admin_id: str, request_id: int, comment: Optional[str] = None
) -> Dict[str, Any]:
    """pending -> denied"""
    require_admin(conn, admin_id)
    request = _pending_signup(conn, request_id)
    conn.execute(
        """
        UPDATE signup_approval_requests
        SET status = 'denied', reviewed_by = ?, reviewed_at = ?, review_comment = ?
        WHERE id = ?
        """,
        (admin_id, timestamp(), comment, request_id),
    )
    conn.commit()
    logger.info("Admin %s denied signup request %s", admin_id, request_id)
    return {"message": "Signup request denied", "email": request["email"], "first_name": request["first_name"]}


# ------------------------- User management ------------------------- #
def remove_user(
    conn: sqlite3.Connection,
    email: str,
    new_location_owners: Optional[Dict[str, str]] = None,
    acting_admin_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Delete a user while keeping the library intact.

    Locations they own are handed to other admins first; the books they
    added stay on their shelves without an owner.
    """
    email = normalize_email(email)
    if not email:
        raise InvalidRequest("email_to_delete required")
    user = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
    if not user:
        raise NotFound("User not found")
    user_id = user["id"]

    owned = [dict(row) for row in conn.execute("SELECT id, name FROM locations WHERE owner_id = ?", (user_id,))]
    if owned and not new_location_owners:
        raise InvalidRequest(
            "Location ownership transfer required",
            {"owned_locations": owned, "requires_ownership_transfer": True},
        )

    # Validate every transfer before touching anything
    transfers = []
    for location in owned:
        new_owner_id = (new_location_owners or {}).get(str(location["id"]))
        if not new_owner_id:
            raise InvalidRequest(f"New owner required for location: {location['name']}")
        if new_owner_id == user_id:
            raise InvalidRequest("New owner must be a different user")
        new_owner = conn.execute("SELECT user_role FROM users WHERE id = ?", (new_owner_id,)).fetchone()
        if not new_owner or new_owner["user_role"] != ADMIN_ROLE:
            raise InvalidRequest("New owner must be an admin user")
        transfers.append((location["id"], new_owner_id))

    now = timestamp()
    for location_id, new_owner_id in transfers:
        conn.execute("UPDATE locations SET owner_id = ?, updated_at = ? WHERE id = ?", (new_owner_id, now, location_id))
        conn.execute(
            """
            INSERT OR REPLACE INTO location_members (location_id, user_id, role, invited_by, joined_at)
            VALUES (?, ?, 'owner', ?, ?)
            """,
            (location_id, new_owner_id, acting_admin_id, now),
        )

    conn.execute("UPDATE books SET added_by = NULL WHERE added_by = ?", (user_id,))
    conn.execute("UPDATE book_removal_requests SET requester_id = NULL WHERE requester_id = ?", (user_id,))
    conn.execute("UPDATE book_removal_requests SET reviewed_by = NULL WHERE reviewed_by = ?", (user_id,))
    conn.execute("DELETE FROM book_ratings WHERE user_id = ?", (user_id,))
    conn.execute("DELETE FROM location_members WHERE user_id = ?", (user_id,))
    conn.execute("DELETE FROM location_invitations WHERE invited_by = ?", (user_id,))
    conn.execute("DELETE FROM location_invitations WHERE lower(invited_email) = ?", (email,))
    conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
    conn.commit()
    logger.info("Removed user %s (%s); %d locations transferred", user_id, email, len(transfers))
    return {
        "message": f"User {email} deleted successfully. Books and shelves preserved.",
        "deleted_user_id": user_id,
        "transferred_locations_count": len(transfers),
        "books_preserved": True,
        "shelves_preserved": True,
    }


def cleanup_user(
    conn: sqlite3.Connection,
    admin_id: str,
    email_to_delete: Optional[str],
    new_location_owners: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    require_admin(conn, admin_id)
    return remove_user(conn, email_to_delete or "", new_location_owners, acting_admin_id=admin_id)


def debug_users(conn: sqlite3.Connection, admin_id: str) -> List[Dict[str, Any]]:
    require_admin(conn, admin_id)
    rows = conn.execute(
        """
        SELECT id, email, first_name, last_name, auth_provider, email_verified, user_role, created_at
        FROM users ORDER BY created_at DESC
        """
    ).fetchall()
    return [dict(row) for row in rows]


def list_users_with_stats(conn: sqlite3.Connection, admin_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if admin_id is not None:
        require_admin(conn, admin_id)
    rows = conn.execute(
        """
        SELECT u.id, u.email, u.first_name, u.last_name, u.auth_provider,
               u.email_verified, u.user_role, u.created_at,
               (SELECT COUNT(*) FROM books b WHERE b.added_by = u.id) AS books_added,
               (SELECT COUNT(*) FROM (
                    SELECT location_id AS lid FROM location_members WHERE user_id = u.id
                    UNION
                    SELECT id AS lid FROM locations WHERE owner_id = u.id
               )) AS locations_joined,
               (SELECT MAX(b.created_at) FROM books b WHERE b.added_by = u.id) AS last_book_added
        FROM users u
        ORDER BY u.created_at DESC
        """
    ).fetchall()
    return [dict(row) for row in rows]


def set_role(conn: sqlite3.Connection, user_id: str, role: str) -> None:
    if role not in VALID_ROLES:
        raise InvalidRequest('Invalid role. Must be "admin" or "user"')
    cursor = conn.execute(
        "UPDATE users SET user_role = ?, updated_at = ? WHERE id = ?", (role, timestamp(), user_id)
    )
    if cursor.rowcount == 0:
        raise NotFound("User not found")
    conn.commit()


def update_user_role(conn: sqlite3.Connection, admin_id: str, target_user_id: str, role: str) -> Dict[str, Any]:
    require_admin(conn, admin_id)
    if role not in VALID_ROLES:
        raise InvalidRequest('Invalid role. Must be "admin" or "user"')
    target = conn.execute("SELECT id, email FROM users WHERE id = ?", (target_user_id,)).fetchone()
    if not target:
        raise NotFound("User not found")
    if target_user_id == admin_id and role != ADMIN_ROLE:
        raise InvalidRequest("Cannot demote yourself from admin")

    set_role(conn, target_user_id, role)
    logger.info("Admin %s set role of %s to %s", admin_id, target_user_id, role)
    return {"message": f"User role updated to {role}", "user_id": target_user_id, "role": role}


def available_admins(conn: sqlite3.Connection, admin_id: str) -> List[Dict[str, Any]]:
    require_admin(conn, admin_id)
    rows = conn.execute(
        """
        SELECT id, email, first_name, last_name FROM users
        WHERE user_role = 'admin'
        ORDER BY first_name, last_name, email
        """
    ).fetchall()
    return [dict(row) for row in rows]


# ------------------------- Analytics ------------------------- #
def _count(conn: sqlite3.Connection, query: str, params: tuple = ()) -> int:
    return conn.execute(query, params).fetchone()[0] or 0


def analytics(conn: sqlite3.Connection, admin_id: str) -> Dict[str, Any]:
    require_admin(conn, admin_id)
    since = timestamp(timedelta(days=-30))

    books_per_location = conn.execute(
        """
        SELECT l.id, l.name, COUNT(b.id) AS book_count
        FROM locations l
        LEFT JOIN shelves s ON l.id = s.location_id
        LEFT JOIN books b ON s.id = b.shelf_id
        GROUP BY l.id, l.name
        ORDER BY book_count DESC, l.name
        """
    ).fetchall()

    active_users = conn.execute(
        """
        SELECT u.first_name, u.last_name, u.email, COUNT(b.id) AS books_added
        FROM users u
        JOIN books b ON u.id = b.added_by
        GROUP BY u.id
        ORDER BY books_added DESC, u.email
        LIMIT 10
        """
    ).fetchall()

    genre_counts: Counter = Counter()
    for row in conn.execute(
        "SELECT categories, enhanced_genres FROM books WHERE categories IS NOT NULL OR enhanced_genres IS NOT NULL"
    ):
        for genre in decode_list(row["categories"]) + decode_list(row["enhanced_genres"]):
            if isinstance(genre, str) and genre.strip():
                genre_counts[genre.strip()] += 1

    return {
        "overview": {
            "totalBooks": _count(conn, "SELECT COUNT(*) FROM books"),
            "totalUsers": _count(conn, "SELECT COUNT(*) FROM users"),
            "totalLocations": _count(conn, "SELECT COUNT(*) FROM locations"),
            "pendingRequests": _count(conn, "SELECT COUNT(*) FROM book_removal_requests WHERE status = 'pending'"),
            "unorganizedBooks": _count(conn, "SELECT COUNT(*) FROM books WHERE shelf_id IS NULL"),
            "recentBooks": _count(conn, "SELECT COUNT(*) FROM books WHERE created_at >= ?", (since,)),
            "recentCheckouts": _count(
                conn,
                "SELECT COUNT(*) FROM book_checkout_history WHERE action = 'checkout' AND action_date >= ?",
                (since,),
            ),
        },
        "booksPerLocation": [dict(row) for row in books_per_location],
        "activeUsers": [dict(row) for row in active_users],
        "topGenres": [{"genre": genre, "count": count} for genre, count in genre_counts.most_common(10)],
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }
