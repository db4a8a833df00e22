import logging

from fastapi import APIRouter, Depends

from librarycard.dependencies import get_current_user_id
from librarycard.exceptions import InvalidRequest
from librarycard.schemas import ContactModel, OCRRequestModel
from librarycard.services import mailer
from librarycard.services.vision import VisionService
from librarycard.validators import is_plausible_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["misc"])


def get_vision_service() -> VisionService:
    return VisionService()


@router.post("/contact")
async def contact(payload: ContactModel):
    """İletişim formu; mesaj kütüphaneciye yanıt adresiyle iletilir."""
    if not payload.name or not payload.email or not payload.message:
        raise InvalidRequest("Name, email, and message are required")
    if not is_plausible_email(payload.email):
        raise InvalidRequest("Valid email address required")
    await mailer.send_contact_email(payload.name, payload.email, payload.message)
    return {"success": True, "message": "Your message has been sent"}


@router.post("/ocr-vision")
async def ocr_vision(
    payload: OCRRequestModel,
    _: str = Depends(get_current_user_id),
    vision: VisionService = Depends(get_vision_service),
):
    return await vision.detect_text(payload.image or "")
