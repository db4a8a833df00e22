"""Accounts: registration, sign-in, email verification, password reset and profiles."""

import logging
import sqlite3
from datetime import timedelta
from typing import Any, Dict, List, Optional

from librarycard.config import settings
from librarycard.database import is_expired, timestamp
from librarycard.exceptions import AuthenticationFailed, InvalidRequest, NotFound
from librarycard.security import (
    create_access_token,
    generate_id,
    generate_token,
    hash_password,
    validate_password_strength,
    verify_password,
)
from librarycard.validators import is_plausible_email, normalize_email

logger = logging.getLogger(__name__)

PUBLIC_USER_FIELDS = (
    "id", "email", "first_name", "last_name", "auth_provider",
    "email_verified", "user_role", "created_at", "updated_at",
)


def public_user(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """User fields that are safe to return to clients."""
    if row is None:
        return None
    data = {key: row[key] for key in PUBLIC_USER_FIELDS if key in row.keys()}
    if "email_verified" in data:
        data["email_verified"] = bool(data["email_verified"])
    data["user_role"] = data.get("user_role") or "user"
    return data


def get_user(conn: sqlite3.Connection, user_id: str) -> Optional[sqlite3.Row]:
    return conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()


def get_user_by_email(conn: sqlite3.Connection, email: str) -> Optional[sqlite3.Row]:
    return conn.execute("SELECT * FROM users WHERE email = ?", (normalize_email(email),)).fetchone()


def list_admin_emails(conn: sqlite3.Connection) -> List[str]:
    rows = conn.execute("SELECT email FROM users WHERE user_role = 'admin' ORDER BY email").fetchall()
    return [row["email"] for row in rows]


def sync_oauth_user(conn: sqlite3.Connection, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create or refresh a user record coming from an external sign-in provider.

    The stored password hash and role are never touched by a sync.
    """
    email = normalize_email(data.get("email"))
    if not data.get("id") or not email:
        raise InvalidRequest("User id and email are required")

    try:
        _upsert_oauth_user(conn, data, email)
    except sqlite3.IntegrityError as e:
        raise InvalidRequest("Email is already registered to another account") from e
    conn.commit()
    logger.info("Synced user %s from %s", data["id"], data.get("auth_provider") or "google")
    return public_user(get_user(conn, data["id"]))


def _upsert_oauth_user(conn: sqlite3.Connection, data: Dict[str, Any], email: str) -> None:
    conn.execute(
        """
        INSERT INTO users (id, email, first_name, last_name, auth_provider, email_verified, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            email = excluded.email,
            first_name = excluded.first_name,
            last_name = excluded.last_name,
            auth_provider = excluded.auth_provider,
            email_verified = excluded.email_verified,
            updated_at = excluded.updated_at
        """,
        (
            data["id"],
            email,
            data.get("first_name"),
            data.get("last_name"),
            data.get("auth_provider") or "google",
            1 if data.get("email_verified", True) else 0,
            timestamp(),
            timestamp(),
        ),
    )


def find_valid_invitation(
    conn: sqlite3.Connection, email: str, token: Optional[str] = None
) -> Optional[sqlite3.Row]:
    """Unused, unexpired invitation by token, or by invited email when no token is given."""
    base = """
        SELECT li.*, l.name AS location_name
        FROM location_invitations li
        LEFT JOIN locations l ON li.location_id = l.id
        WHERE li.used_at IS NULL AND li.expires_at > ? AND {condition}
        ORDER BY li.created_at DESC
        LIMIT 1
    """
    if token:
        return conn.execute(base.format(condition="li.invitation_token = ?"), (timestamp(), token)).fetchone()
    return conn.execute(
        base.format(condition="lower(li.invited_email) = ?"), (timestamp(), normalize_email(email))
    ).fetchone()


def register(
    conn: sqlite3.Connection,
    email: str,
    password: str,
    first_name: str,
    last_name: Optional[str] = None,
    invitation_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Register with email and password.

    Invited users get a verified account straight away. Everyone else lands
    in the signup approval queue; the caller is responsible for notifying
    admins when ``requires_approval`` is set.
    """
    email = normalize_email(email)
    if not is_plausible_email(email) or not first_name:
        raise InvalidRequest("Email, password, and first name are required")
    validate_password_strength(password)

    if get_user_by_email(conn, email):
        raise InvalidRequest("User already exists")

    pending = conn.execute(
        "SELECT id FROM signup_approval_requests WHERE email = ? AND status = 'pending'", (email,)
    ).fetchone()
    if pending:
        raise InvalidRequest("A signup request for this email is already pending admin approval")

    password_hash = hash_password(password)
    invitation = find_valid_invitation(conn, email, invitation_token)

    if invitation:
        user_id = generate_id()
        # Receiving the invitation already proved ownership of the address
        conn.execute(
            """
            INSERT INTO users (id, email, first_name, last_name, password_hash, auth_provider,
                               email_verified, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 'email', 1, ?, ?)
            """,
            (user_id, email, first_name, last_name or "", password_hash, timestamp(), timestamp()),
        )
        conn.commit()
        location_name = invitation["location_name"]
        logger.info("Registered invited user %s for location %s", user_id, invitation["location_id"])
        return {
            "message": (
                f'Registration successful! You have been invited to join "{location_name}". '
                "You can now sign in with your new account."
            ),
            "userId": user_id,
            "requires_verification": False,
            "has_invitation": True,
            "location_name": location_name,
        }

    cursor = conn.execute(
        """
        INSERT INTO signup_approval_requests (email, first_name, last_name, password_hash, auth_provider,
                                              status, requested_at)
        VALUES (?, ?, ?, ?, 'email', 'pending', ?)
        """,
        (email, first_name, last_name or "", password_hash, timestamp()),
    )
    conn.commit()
    logger.info("Created signup approval request %s for %s", cursor.lastrowid, email)
    return {
        "message": (
            "Your signup request has been submitted for admin approval. "
            "You will receive an email notification once your request is reviewed."
        ),
        "requires_approval": True,
        "request_id": cursor.lastrowid,
    }


def authenticate(conn: sqlite3.Connection, email: str, password: str) -> Dict[str, Any]:
    """Check email/password credentials and issue a bearer token."""
    user = conn.execute(
        "SELECT * FROM users WHERE email = ? AND auth_provider = 'email'", (normalize_email(email),)
    ).fetchone()
    if not user:
        raise AuthenticationFailed("Invalid credentials")
    if not verify_password(password, user["password_hash"]):
        raise AuthenticationFailed("Invalid credentials")
    if not user["email_verified"]:
        raise AuthenticationFailed("Please verify your email before signing in")

    data = public_user(user)
    data["access_token"] = create_access_token(user["id"], user["email"])
    data["token_type"] = "bearer"
    return data


def verify_email(conn: sqlite3.Connection, token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise InvalidRequest("Verification token required")

    user = conn.execute(
        "SELECT id, email, email_verification_expires FROM users WHERE email_verification_token = ?", (token,)
    ).fetchone()
    if not user:
        raise InvalidRequest("Invalid or expired verification token")
    if is_expired(user["email_verification_expires"]):
        raise InvalidRequest("Verification token has expired")

    conn.execute(
        """
        UPDATE users
        SET email_verified = 1, email_verification_token = NULL, email_verification_expires = NULL, updated_at = ?
        WHERE id = ?
        """,
        (timestamp(), user["id"]),
    )
    conn.commit()

    response: Dict[str, Any] = {"message": "Email verified successfully"}
    invitation = find_valid_invitation(conn, user["email"])
    if invitation:
        response["pending_invitation"] = invitation["invitation_token"]
    return response


def request_password_reset(conn: sqlite3.Connection, email: str) -> Optional[Dict[str, Any]]:
    """Store a reset token for an email account.

    Returns what the caller needs to send the email, or None when there is
    no such account. Callers must not reveal which of the two happened.
    """
    if not is_plausible_email(email):
        raise InvalidRequest("Valid email address required")

    user = conn.execute(
        "SELECT id, email, first_name FROM users WHERE email = ? AND auth_provider = 'email'",
        (normalize_email(email),),
    ).fetchone()
    if not user:
        logger.info("Password reset requested for unknown account")
        return None

    token = generate_token()
    conn.execute(
        "UPDATE users SET password_reset_token = ?, password_reset_expires = ?, updated_at = ? WHERE id = ?",
        (token, timestamp(timedelta(minutes=settings.password_reset_minutes)), timestamp(), user["id"]),
    )
    conn.commit()
    return {"email": user["email"], "first_name": user["first_name"], "token": token}


def _user_for_reset_token(conn: sqlite3.Connection, token: Optional[str]) -> sqlite3.Row:
    if not token:
        raise InvalidRequest("Reset token required")
    user = conn.execute(
        "SELECT id, email, password_reset_expires FROM users WHERE password_reset_token = ?", (token,)
    ).fetchone()
    if not user or is_expired(user["password_reset_expires"]):
        raise InvalidRequest("Invalid or expired reset token")
    return user


def check_reset_token(conn: sqlite3.Connection, token: Optional[str]) -> Dict[str, Any]:
    user = _user_for_reset_token(conn, token)
    return {"valid": True, "email": user["email"]}


def reset_password(conn: sqlite3.Connection, token: Optional[str], password: str) -> Dict[str, Any]:
    validate_password_strength(password)
    user = _user_for_reset_token(conn, token)
    conn.execute(
        """
        UPDATE users
        SET password_hash = ?, password_reset_token = NULL, password_reset_expires = NULL, updated_at = ?
        WHERE id = ?
        """,
        (hash_password(password), timestamp(), user["id"]),
    )
    conn.commit()
    logger.info("Password reset for user %s", user["id"])
    return {"message": "Password has been reset successfully"}


def check_user(conn: sqlite3.Connection, email: Optional[str]) -> Dict[str, Any]:
    if not email:
        raise InvalidRequest("Email parameter required")
    user = get_user_by_email(conn, email)
    return {"exists": user is not None, "verified": bool(user["email_verified"]) if user else False}


def get_profile(conn: sqlite3.Connection, user_id: str) -> Dict[str, Any]:
    user = get_user(conn, user_id)
    if not user:
        raise NotFound("User not found")
    return public_user(user)


def update_profile(conn: sqlite3.Connection, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Update names, and the email address for email/password accounts only."""
    user = get_user(conn, user_id)
    if not user:
        raise NotFound("User not found")

    updates: Dict[str, Any] = {}
    for key in ("first_name", "last_name"):
        if changes.get(key) is not None:
            updates[key] = changes[key]

    if changes.get("email") is not None and user["auth_provider"] == "email":
        email = normalize_email(changes["email"])
        if not is_plausible_email(email):
            raise InvalidRequest("Valid email address required")
        existing = get_user_by_email(conn, email)
        if existing and existing["id"] != user_id:
            raise InvalidRequest("Email is already in use")
        updates["email"] = email

    if not updates:
        raise InvalidRequest("No valid fields to update")

    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), timestamp(), user_id),
    )
    conn.commit()
    return public_user(get_user(conn, user_id))
