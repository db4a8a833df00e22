"""Location invitations.

An invitation is a single-use token bound to one email address and one
location. It is active until it is used, revoked (deleted) or expires.
"""

import logging
import sqlite3
from datetime import timedelta
from typing import Any, Dict, List, Optional

from librarycard.config import settings
from librarycard.database import is_expired, timestamp
from librarycard.exceptions import InvalidRequest, NotFound, PermissionDenied
from librarycard.permissions import is_admin, is_location_member, is_location_owner
from librarycard.security import generate_token
from librarycard.validators import normalize_email

logger = logging.getLogger(__name__)


def create_invitation(
    conn: sqlite3.Connection, user_id: str, location_id: int, invited_email: Optional[str]
) -> Dict[str, Any]:
    """Create an invitation and return it with what the invitation email needs.

    The returned ``invitation_token``, ``location_name`` and ``inviter_name``
    are for the mailer only and are stripped before the HTTP response.
    """
    if not is_admin(conn, user_id):
        raise PermissionDenied("Admin privileges required to create invitations")
    email = normalize_email(invited_email)
    if "@" not in email:
        raise InvalidRequest("Valid email address required")
    if not is_location_owner(conn, user_id, location_id):
        raise PermissionDenied("Access denied")

    existing_user = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
    if existing_user and is_location_member(conn, existing_user["id"], location_id):
        raise InvalidRequest("User is already a member of this location")

    active = conn.execute(
        """
        SELECT id FROM location_invitations
        WHERE location_id = ? AND lower(invited_email) = ? AND used_at IS NULL AND expires_at > ?
        """,
        (location_id, email, timestamp()),
    ).fetchone()
    if active:
        raise InvalidRequest("An active invitation already exists for this email")

    token = generate_token()
    expires_at = timestamp(timedelta(days=settings.invitation_days))
    cursor = conn.execute(
        """
        INSERT INTO location_invitations (location_id, invited_email, invitation_token, invited_by, expires_at, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (location_id, email, token, user_id, expires_at, timestamp()),
    )
    conn.commit()

    details = conn.execute(
        """
        SELECT l.name AS location_name, u.first_name AS inviter_name
        FROM locations l LEFT JOIN users u ON u.id = ?
        WHERE l.id = ?
        """,
        (user_id, location_id),
    ).fetchone()
    logger.info("User %s invited %s to location %s", user_id, email, location_id)
    return {
        "id": cursor.lastrowid,
        "invited_email": email,
        "expires_at": expires_at,
        "message": "Invitation sent successfully",
        "invitation_token": token,
        "location_name": details["location_name"] if details else None,
        "inviter_name": details["inviter_name"] if details else None,
    }


def _lookup(conn: sqlite3.Connection, token: Optional[str], unknown_message: str) -> sqlite3.Row:
    if not token:
        raise InvalidRequest("Invitation token required")
    invitation = conn.execute(
        """
        SELECT li.*, l.name AS location_name
        FROM location_invitations li
        LEFT JOIN locations l ON li.location_id = l.id
        WHERE li.invitation_token = ? AND li.used_at IS NULL
        """,
        (token,),
    ).fetchone()
    if not invitation:
        raise InvalidRequest(unknown_message)
    if is_expired(invitation["expires_at"]):
        raise InvalidRequest("Invitation has expired")
    return invitation


def accept_invitation(conn: sqlite3.Connection, user_id: str, token: Optional[str]) -> Dict[str, Any]:
    invitation = _lookup(conn, token, "Invalid or expired invitation")

    user = conn.execute("SELECT email FROM users WHERE id = ?", (user_id,)).fetchone()
    if not user or normalize_email(user["email"]) != normalize_email(invitation["invited_email"]):
        raise InvalidRequest("Invitation email does not match your account")
    if is_location_member(conn, user_id, invitation["location_id"]):
        raise InvalidRequest("You are already a member of this location")

    now = timestamp()
    conn.execute(
        """
        INSERT INTO location_members (location_id, user_id, role, invited_by, joined_at)
        VALUES (?, ?, 'member', ?, ?)
        """,
        (invitation["location_id"], user_id, invitation["invited_by"], now),
    )
    # used_at guard keeps the token single-use even under concurrent accepts
    cursor = conn.execute(
        "UPDATE location_invitations SET used_at = ? WHERE id = ? AND used_at IS NULL", (now, invitation["id"])
    )
    if cursor.rowcount == 0:
        conn.rollback()
        raise InvalidRequest("Invalid or expired invitation")
    conn.commit()
    logger.info("User %s joined location %s via invitation %s", user_id, invitation["location_id"], invitation["id"])
    return {
        "message": f"Successfully joined {invitation['location_name']}",
        "location_id": invitation["location_id"],
        "location_name": invitation["location_name"],
    }


def list_invitations(conn: sqlite3.Connection, user_id: str, location_id: int) -> List[Dict[str, Any]]:
    if not is_admin(conn, user_id):
        raise PermissionDenied("Admin privileges required to view invitations")
    if not is_location_owner(conn, user_id, location_id):
        raise PermissionDenied("Access denied")
    rows = conn.execute(
        """
        SELECT li.*, u.first_name AS invited_by_name
        FROM location_invitations li
        LEFT JOIN users u ON li.invited_by = u.id
        WHERE li.location_id = ?
        ORDER BY li.created_at DESC, li.id DESC
        """,
        (location_id,),
    ).fetchall()
    return [dict(row) for row in rows]


def invitation_details(conn: sqlite3.Connection, token: Optional[str]) -> Dict[str, Any]:
    """Public view of an invitation, shown on the sign-up page."""
    invitation = _lookup(conn, token, "Invalid or expired invitation token")
    return {
        "invited_email": invitation["invited_email"],
        "location_name": invitation["location_name"],
        "expires_at": invitation["expires_at"],
    }


def revoke_invitation(conn: sqlite3.Connection, user_id: str, invitation_id: int) -> Dict[str, Any]:
    if not is_admin(conn, user_id):
        raise PermissionDenied("Admin privileges required to revoke invitations")

    invitation = conn.execute(
        "SELECT id, location_id, invited_email, used_at FROM location_invitations WHERE id = ?",
        (invitation_id,),
    ).fetchone()
    if not invitation:
        raise NotFound("Invitation not found")
    if not is_location_owner(conn, user_id, invitation["location_id"]):
        raise PermissionDenied("Access denied - only location owner can revoke invitations")
    if invitation["used_at"]:
        raise InvalidRequest("Cannot revoke invitation that has already been accepted")

    conn.execute("DELETE FROM location_invitations WHERE id = ?", (invitation_id,))
    conn.commit()
    logger.info("User %s revoked invitation %s", user_id, invitation_id)
    return {
        "message": "Invitation revoked successfully",
        "revoked_invitation": {"id": invitation_id, "invited_email": invitation["invited_email"]},
    }
