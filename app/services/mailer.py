"""
Verification emails via Resend.
Without RESEND_API_KEY (local dev) nothing is sent and the caller gets the link back
to show on screen; in production a missing key is an error.
"""
import logging
import os
from dataclasses import dataclass
from urllib.parse import quote
from app.core.config import get_app_url, is_production

logger = logging.getLogger(__name__)

FROM_EMAIL = os.getenv("MAIL_FROM", "All In One <no-reply@allinone.tools>")


class MailDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class SendVerificationResult:
    delivered: bool
    verification_url: str


def build_verification_url(token: str) -> str:
    return f"{get_app_url()}/api/auth/verify-email?token={quote(token)}"


def send_verification_email(to: str, name: str, token: str) -> SendVerificationResult:
    verification_url = build_verification_url(token)
    api_key = os.getenv("RESEND_API_KEY", "").strip()

    if not api_key:
        if is_production():
            raise MailDeliveryError("RESEND_API_KEY is not configured in production.")
        logger.warning("[mailer] RESEND_API_KEY not set. Use this verification URL manually in dev: %s", verification_url)
        return SendVerificationResult(delivered=False, verification_url=verification_url)

    import resend
    resend.api_key = api_key

    html = f"""
    <p>Hi {name},</p>
    <p>Click the link below to verify your email address:</p>
    <p><a href="{verification_url}">Verify Email</a></p>
    <p>This link expires in 24 hours.</p>
    """
    try:
        resend.Emails.send({
            "from": FROM_EMAIL,
            "to": [to],
            "subject": "Verify your All In One account",
            "html": html.strip(),
            "text": f"Hi {name}, verify your email: {verification_url}",
        })
    except Exception as e:
        raise MailDeliveryError(f"Failed to send verification email: {e}") from e

    logger.info("[mailer] verification email sent to %s", to)
    return SendVerificationResult(delivered=True, verification_url=verification_url)
