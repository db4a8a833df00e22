import logging
import sqlite3

from fastapi import APIRouter, Depends, Query

from librarycard import invitations
from librarycard.dependencies import get_current_user_id, get_db
from librarycard.exceptions import EmailDeliveryError
from librarycard.schemas import InvitationAcceptModel, InvitationCreateModel
from librarycard.services import mailer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["invitations"])

# Yalnızca e-posta gönderimi için; HTTP yanıtına girmez
_MAILER_ONLY_FIELDS = ("invitation_token", "location_name", "inviter_name")


@router.post("/locations/{location_id}/invite")
async def create_invitation(
    location_id: int,
    payload: InvitationCreateModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    invitation = invitations.create_invitation(conn, user_id, location_id, payload.invited_email)
    try:
        await mailer.send_invitation_email(
            invitation["invited_email"],
            invitation["location_name"] or "a location",
            invitation["invitation_token"],
            invitation["inviter_name"],
        )
    except EmailDeliveryError:
        # Davet yine de geçerli; e-posta hatası isteği başarısız kılmaz
        logger.error("Invitation %s created but email delivery failed", invitation["id"])
    return {key: value for key, value in invitation.items() if key not in _MAILER_ONLY_FIELDS}


@router.get("/locations/{location_id}/invitations")
def list_invitations(
    location_id: int,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return invitations.list_invitations(conn, user_id, location_id)


@router.get("/invitations/details")
def invitation_details(token: str | None = Query(default=None), conn: sqlite3.Connection = Depends(get_db)):
    return invitations.invitation_details(conn, token)


@router.post("/invitations/accept")
def accept_invitation(
    payload: InvitationAcceptModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return invitations.accept_invitation(conn, user_id, payload.invitation_token)


@router.delete("/invitations/{invitation_id}/revoke")
def revoke_invitation(
    invitation_id: int,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return invitations.revoke_invitation(conn, user_id, invitation_id)
