import logging
import sqlite3

from fastapi import APIRouter, Depends, Query

from librarycard import users
from librarycard.dependencies import get_api_key, get_current_user_id, get_db
from librarycard.exceptions import EmailDeliveryError
from librarycard.schemas import (
    CredentialsModel,
    ForgotPasswordModel,
    ProfileUpdateModel,
    RegisterModel,
    ResetPasswordModel,
    UserSyncModel,
)
from librarycard.services import mailer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a password reset link has been sent."


@router.post("/users")
def sync_user(payload: UserSyncModel, conn: sqlite3.Connection = Depends(get_db), _: str = Depends(get_api_key)):
    """Harici oturum sağlayıcısından gelen kullanıcıyı ekle/güncelle."""
    return users.sync_oauth_user(conn, payload.model_dump())


@router.get("/users/check")
def check_user(email: str | None = Query(default=None), conn: sqlite3.Connection = Depends(get_db)):
    return users.check_user(conn, email)


@router.post("/auth/register")
async def register(payload: RegisterModel, conn: sqlite3.Connection = Depends(get_db)):
    result = users.register(
        conn,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        invitation_token=payload.invitation_token,
    )
    if result.get("requires_approval"):
        # Bildirim hataları kayıt akışını bozmamalı
        sent = await mailer.notify_admins_of_signup_request(
            users.list_admin_emails(conn), payload.email, payload.first_name, payload.last_name
        )
        logger.info("Notified %d admins of signup request %s", sent, result["request_id"])
    return result


@router.post("/auth/verify")
def verify_credentials(payload: CredentialsModel, conn: sqlite3.Connection = Depends(get_db)):
    return users.authenticate(conn, payload.email, payload.password)


@router.get("/auth/verify-email")
def verify_email(token: str | None = Query(default=None), conn: sqlite3.Connection = Depends(get_db)):
    return users.verify_email(conn, token)


@router.post("/auth/forgot-password")
async def forgot_password(payload: ForgotPasswordModel, conn: sqlite3.Connection = Depends(get_db)):
    reset = users.request_password_reset(conn, payload.email)
    if reset:
        try:
            await mailer.send_password_reset_email(reset["email"], reset["first_name"], reset["token"])
        except EmailDeliveryError:
            logger.error("Password reset email could not be delivered")
    # Yanıt, hesabın var olup olmadığını açığa vurmaz
    return {"message": FORGOT_PASSWORD_MESSAGE}


@router.get("/auth/verify-reset-token")
def verify_reset_token(token: str | None = Query(default=None), conn: sqlite3.Connection = Depends(get_db)):
    return users.check_reset_token(conn, token)


@router.post("/auth/reset-password")
def reset_password(payload: ResetPasswordModel, conn: sqlite3.Connection = Depends(get_db)):
    return users.reset_password(conn, payload.token, payload.password)


@router.get("/profile")
def get_profile(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return users.get_profile(conn, user_id)


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return users.update_profile(conn, user_id, payload.model_dump(exclude_none=True))
