from __future__ import annotations

import html
import logging
import re
from typing import Any, Dict, Optional

import requests

from config import get_settings

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #374151; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #fef9e7; border-radius: 12px; padding: 32px;">
    <h2 style="color: #78350f; margin: 0 0 20px 0;">Hey there!</h2>
    <p style="margin: 0 0 24px 0; font-size: 16px;"><strong style="color: #78350f;">{sender}</strong> {pitch}</p>
    <a href="{cta_url}" style="background: #78350f; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; display: inline-block;">{cta_text}</a>
  </div>
</body>
</html>
"""


class MailerError(RuntimeError):
    """Raised when an e-mail cannot be handed to the provider."""


def build_invite(
    sender_name: str,
    *,
    shelf_url: Optional[str] = None,
    existing_user: bool = False,
) -> Dict[str, str]:
    """Subject and HTML body for an invite, depending on whether the recipient already has an account."""
    cta_url = shelf_url or get_settings().app_url
    sender = html.escape(sender_name)
    if existing_user:
        subject = f"{sender_name} wants to connect with you on Shelvy!"
        pitch = (
            "wants to connect with you on Shelvy! They thought you'd enjoy checking out "
            "their bookshelf and sharing reading recommendations."
        )
        cta_text = f"View {sender}'s Shelf" if shelf_url else "Open Shelvy"
    else:
        subject = f"{sender_name} invited you to join Shelvy!"
        pitch = (
            "thinks you'd love Shelvy, a beautiful way to track your reading journey "
            "and discover new favorites."
        )
        cta_text = f"View {sender}'s Shelf" if shelf_url else "Start Your Shelf"
    body = _TEMPLATE.format(
        sender=sender,
        pitch=pitch,
        cta_url=html.escape(cta_url, quote=True),
        cta_text=cta_text,
    )
    return {"subject": subject, "html": body}


def send_invite(
    recipient_email: str,
    sender_name: str,
    *,
    shelf_url: Optional[str] = None,
    existing_user: bool = False,
) -> Dict[str, Any]:
    address = (recipient_email or "").strip()
    if not address or not (sender_name or "").strip():
        raise ValueError("Missing required fields")
    if not EMAIL_PATTERN.match(address):
        raise ValueError("Invalid email address")

    settings = get_settings()
    if not settings.resend_api_key:
        raise MailerError("E-mail delivery is not configured")

    message = build_invite(sender_name.strip(), shelf_url=shelf_url, existing_user=existing_user)
    try:
        response = requests.post(
            RESEND_EMAILS_URL,
            json={
                "from": settings.mail_sender,
                "to": [address],
                "subject": message["subject"],
                "html": message["html"],
            },
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            timeout=settings.http_timeout,
        )
    except requests.RequestException as exc:
        logger.error("Resend request failed: %s", exc)
        raise MailerError("Failed to send email") from exc

    if not response.ok:
        logger.error("Resend API error: %s", response.text)
        raise MailerError("Failed to send email")

    logger.info("Invite sent to %s (existing user: %s)", address, existing_user)
    return {"success": True, "is_existing_user": existing_user}
