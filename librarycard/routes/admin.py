import logging
import sqlite3

from fastapi import APIRouter, Body, Depends

from librarycard import admin
from librarycard.dependencies import get_current_user_id, get_db
from librarycard.exceptions import EmailDeliveryError
from librarycard.schemas import CleanupUserModel, RoleUpdateModel, SignupDecisionModel
from librarycard.services import mailer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["admin"])


# --- Kayıt onayı ---
@router.get("/signup-requests")
def list_signup_requests(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return admin.list_signup_requests(conn, user_id)


@router.post("/signup-requests/{request_id}/approve")
async def approve_signup_request(
    request_id: int,
    payload: SignupDecisionModel | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    comment = payload.comment if payload else None
    result = admin.approve_signup_request(conn, user_id, request_id, comment)
    try:
        await mailer.send_signup_decision_email(
            result["email"], result["first_name"], True, result["verification_token"], comment
        )
    except EmailDeliveryError:
        logger.error("Approval email for signup request %s could not be delivered", request_id)
    return {"message": result["message"], "user_id": result["user_id"], "email": result["email"]}


@router.post("/signup-requests/{request_id}/deny")
async def deny_signup_request(
    request_id: int,
    payload: SignupDecisionModel | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    comment = payload.comment if payload else None
    result = admin.deny_signup_request(conn, user_id, request_id, comment)
    try:
        await mailer.send_signup_decision_email(result["email"], result["first_name"], False, comment=comment)
    except EmailDeliveryError:
        logger.error("Denial email for signup request %s could not be delivered", request_id)
    return {"message": result["message"], "email": result["email"]}


# --- Kullanıcı yönetimi ---
@router.post("/admin/cleanup-user")
def cleanup_user(
    payload: CleanupUserModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return admin.cleanup_user(conn, user_id, payload.email_to_delete, payload.new_location_owners)


@router.get("/admin/debug-users")
def debug_users(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return admin.debug_users(conn, user_id)


@router.get("/admin/users")
def list_users(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return admin.list_users_with_stats(conn, user_id)


@router.put("/admin/users/{target_user_id}/role")
def update_role(
    target_user_id: str,
    payload: RoleUpdateModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return admin.update_user_role(conn, user_id, target_user_id, payload.role)


@router.get("/admin/available-admins")
def available_admins(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return admin.available_admins(conn, user_id)


@router.get("/admin/analytics")
def analytics(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return admin.analytics(conn, user_id)
