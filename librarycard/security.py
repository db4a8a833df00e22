"""Password hashing, password policy and bearer-token helpers."""

import hashlib
import hmac
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from librarycard.config import settings
from librarycard.exceptions import AuthenticationFailed, InvalidRequest

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
PBKDF2_ITERATIONS = 100000


def validate_password_strength(password: str) -> None:
    """Raise InvalidRequest describing the first rule the password breaks."""
    if len(password or "") < PASSWORD_MIN_LENGTH:
        raise InvalidRequest(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        raise InvalidRequest("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise InvalidRequest("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise InvalidRequest("Password must contain at least one number")
    if not any(ch in SPECIAL_CHARACTERS for ch in password):
        raise InvalidRequest(f"Password must contain at least one special character ({SPECIAL_CHARACTERS})")


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    key = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt.hex()}${key.hex()}"


def _legacy_hash(password: str) -> str:
    # Early accounts were stored as a bare hex SHA-256 of password + 'salt'
    return hashlib.sha256((password + "salt").encode("utf-8")).hexdigest()


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash or password is None:
        return False
    if stored_hash.startswith("pbkdf2_sha256$"):
        try:
            _, iterations, salt_hex, key_hex = stored_hash.split("$")
            key = hashlib.pbkdf2_hmac(
                "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
            )
        except ValueError:
            logger.warning("Malformed password hash encountered")
            return False
        return hmac.compare_digest(key.hex(), key_hex)
    return hmac.compare_digest(_legacy_hash(password), stored_hash)


def generate_id() -> str:
    return str(uuid.uuid4())


def generate_token() -> str:
    """Opaque single-use token for email verification, resets and invitations."""
    return str(uuid.uuid4())


def create_access_token(user_id: str, email: str, expires_minutes: Optional[int] = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.jwt_expiration_minutes
    )
    claims = {"sub": user_id, "email": email, "exp": expires, "iat": datetime.now(timezone.utc)}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a bearer token."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
        raise AuthenticationFailed("Token has expired")
    except JWTError as e:
        logger.info("Rejected invalid access token: %s", e)
        raise AuthenticationFailed("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationFailed("Invalid token")
    return user_id
