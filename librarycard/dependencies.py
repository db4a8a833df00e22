import logging
import sqlite3
from typing import Iterator

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from librarycard import database
from librarycard.config import settings
from librarycard.exceptions import AuthenticationFailed
from librarycard.security import decode_access_token

logger = logging.getLogger(__name__)

# --- Güvenlik ---
api_key_header = APIKeyHeader(name="X-API-Key")
bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Iterator[sqlite3.Connection]:
    """İstek başına bir bağlantı; hata durumunda geri alınır ve her zaman kapatılır."""
    conn = database.get_db_connection()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_api_key(api_key: str = Security(api_key_header)) -> str:
    """Servisler arası çağrılar için API anahtarını doğrulayan bağımlılık."""
    if api_key == settings.api_key:
        return api_key
    logger.warning("Rejected request with invalid API key")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Could not validate credentials",
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    conn: sqlite3.Connection = Depends(get_db),
) -> str:
    """Bearer token'daki kullanıcı kimliği; kullanıcı artık yoksa 401."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed("Unauthorized")
    user_id = decode_access_token(credentials.credentials)
    if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
        logger.info("Token for deleted user %s rejected", user_id)
        raise AuthenticationFailed("Unauthorized")
    return user_id
