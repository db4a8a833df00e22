"""Outbound email.

Resend is used when ``RESEND_API_KEY`` is set, Postmark when
``POSTMARK_API_TOKEN`` is set. With neither configured the message is only
logged, which is what local development and the test-suite rely on.
"""

import logging
import re
from html import escape
from typing import Iterable, Optional

import httpx

from librarycard.config import settings
from librarycard.exceptions import EmailDeliveryError
from librarycard.services.http_client import OptimizedHTTPClient, get_http_client

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
POSTMARK_URL = "https://api.postmarkapp.com/email"


def _html_to_text(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", html)).strip()


def _link(path: str) -> str:
    return f"{settings.app_url.rstrip('/')}{path}"


async def send_email(
    to: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    reply_to: Optional[str] = None,
    client: Optional[OptimizedHTTPClient] = None,
) -> str:
    """Deliver one message and return the name of the provider used."""
    text = text or _html_to_text(html)

    if settings.resend_api_key:
        provider = "resend"
        url = RESEND_URL
        headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
        payload = {"from": settings.email_from, "to": [to], "subject": subject, "html": html, "text": text}
        if reply_to:
            payload["reply_to"] = reply_to
    elif settings.postmark_api_token:
        provider = "postmark"
        url = POSTMARK_URL
        headers = {"X-Postmark-Server-Token": settings.postmark_api_token, "Accept": "application/json"}
        payload = {"From": settings.email_from, "To": to, "Subject": subject, "HtmlBody": html, "TextBody": text}
        if reply_to:
            payload["ReplyTo"] = reply_to
    else:
        logger.info("Email delivery not configured; would send %r to %s", subject, to)
        return "log"

    client = client or await get_http_client()
    try:
        resp = await client.post(url, json=payload, headers=headers, timeout=settings.email_timeout)
    except httpx.HTTPError as e:
        logger.error("Email to %s via %s failed: %s", to, provider, e)
        raise EmailDeliveryError(f"Failed to send email via {provider}") from e

    if resp.status_code >= 400:
        logger.error("Email to %s via %s rejected: HTTP %s %s", to, provider, resp.status_code, resp.text[:200])
        raise EmailDeliveryError(f"Failed to send email via {provider}")

    logger.info("Sent %r to %s via %s", subject, to, provider)
    return provider


def _wrap(title: str, body: str) -> str:
    return (
        '<html><body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">'
        f'<div style="max-width: 600px; margin: 0 auto; padding: 20px;"><h2>📚 {escape(title)}</h2>'
        f"{body}</div></body></html>"
    )


async def send_invitation_email(to: str, location_name: str, token: str, inviter_name: Optional[str] = None) -> str:
    url = _link(f"/auth/signin?invitation={token}")
    inviter = escape(inviter_name or "Someone")
    html = _wrap(
        "You're Invited!",
        f"<p>{inviter} has invited you to join the <strong>{escape(location_name)}</strong> library on LibraryCard.</p>"
        f'<p><a href="{url}">Accept Invitation</a></p>'
        f"<p>This invitation expires in {settings.invitation_days} days.</p>",
    )
    return await send_email(to, f"You're invited to join {location_name} on LibraryCard", html)


async def send_password_reset_email(to: str, first_name: Optional[str], token: str) -> str:
    url = _link(f"/auth/reset-password?token={token}")
    html = _wrap(
        "Reset your password",
        f"<p>Hello {escape(first_name or 'there')},</p>"
        f'<p>Someone asked to reset your LibraryCard password. <a href="{url}">Choose a new password</a></p>'
        "<p>If this wasn't you, you can ignore this email. The link expires in one hour.</p>",
    )
    return await send_email(to, "Reset your LibraryCard password", html)


async def notify_admins_of_signup_request(
    admin_emails: Iterable[str], email: str, first_name: Optional[str], last_name: Optional[str] = None
) -> int:
    """Email every admin; returns how many notifications went out."""
    full_name = " ".join(part for part in (first_name, last_name) if part) or email
    html = _wrap(
        "New Signup Request",
        f"<p><strong>{escape(full_name)}</strong> ({escape(email)}) has requested a LibraryCard account.</p>"
        f'<p><a href="{_link("/admin")}">Review pending requests</a></p>',
    )
    sent = 0
    for admin_email in admin_emails:
        try:
            await send_email(admin_email, "LibraryCard: New Signup Request Pending Approval", html)
            sent += 1
        except EmailDeliveryError:
            logger.warning("Could not notify admin %s of signup request from %s", admin_email, email)
    return sent


async def send_signup_decision_email(
    to: str,
    first_name: Optional[str],
    approved: bool,
    verification_token: Optional[str] = None,
    comment: Optional[str] = None,
) -> str:
    note = f"<p>Note from the administrator: {escape(comment)}</p>" if comment else ""
    if approved:
        url = _link(f"/auth/verify-email?token={verification_token}")
        subject = "LibraryCard: Account Approved - Please Verify Your Email"
        html = _wrap(
            "LibraryCard Account Approved!",
            f"<p>Hello {escape(first_name or 'there')},</p>"
            "<p>Your LibraryCard signup request has been approved.</p>"
            f'<p><a href="{url}">Verify Email Address</a></p>{note}'
            f"<p>This verification link will expire in {settings.verification_hours} hours.</p>",
        )
    else:
        subject = "LibraryCard: Signup Request Update"
        html = _wrap(
            "Signup Request Update",
            f"<p>Hello {escape(first_name or 'there')},</p>"
            f"<p>Unfortunately your LibraryCard signup request was not approved.</p>{note}",
        )
    return await send_email(to, subject, html)


async def send_contact_email(name: str, email: str, message: str) -> str:
    html = _wrap(
        "Contact Form Message",
        f"<p><strong>From:</strong> {escape(name)} ({escape(email)})</p>"
        f"<p>{escape(message)}</p>",
    )
    return await send_email(settings.contact_email, f"LibraryCard Contact: Message from {name}", html, reply_to=email)
