"""Email service - transactional email via Resend"""
import html
import logging
from typing import Optional

import resend

from tokenguard.core.config import settings, LIMIT_THRESHOLD
from tokenguard.services.quota_service import percent_of

logger = logging.getLogger(__name__)

_BODY_STYLE = (
    "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; "
    "line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;"
)


def validate_email_config() -> tuple[bool, str]:
    """
    Validate email service configuration.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not settings.RESEND_API_KEY:
        return False, "RESEND_API_KEY is not set in environment variables"

    if not settings.RESEND_FROM_EMAIL:
        return False, "RESEND_FROM_EMAIL is not set in environment variables"

    return True, ""


def _send_email(to: str, subject: str, html_content: str) -> bool:
    """
    Internal helper function to send email via Resend API.

    Args:
        to: Recipient email address
        subject: Email subject
        html_content: HTML email content

    Returns:
        bool: True on success, False on failure
    """
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY is not set; skipping email")
        return False

    try:
        resend.api_key = settings.RESEND_API_KEY

        response = resend.Emails.send(
            {
                "from": settings.RESEND_FROM_EMAIL,
                "to": [to],
                "subject": subject,
                "html": html_content,
            }
        )

        # Resend returns a dict with 'id' on success (object in older releases)
        email_id = None
        if isinstance(response, dict):
            email_id = response.get('id')
        elif hasattr(response, 'id'):
            email_id = response.id

        if email_id:
            logger.info(f"Email sent successfully to {to} (id: {email_id})")
            return True
        else:
            logger.error(f"Email send returned invalid response: {response} (type: {type(response)})")
            return False

    except Exception as exc:
        logger.error(f"Failed to send email to {to}: {exc}", exc_info=True)
        return False


def render_usage_alert(
    full_name: Optional[str],
    current_tokens: int,
    max_tokens: int,
    threshold: int,
    support_email: str
) -> tuple[str, str]:
    """Build (subject, html) for a usage threshold alert"""
    user_name = html.escape(full_name or "User")
    support = html.escape(support_email)
    usage_line = f"{current_tokens:,} / {max_tokens:,} tokens"

    if threshold >= LIMIT_THRESHOLD:
        subject = "⚠️ Usage Limit Reached - Action Required"
        body = f"""
        <!DOCTYPE html>
        <html>
        <body style="{_BODY_STYLE}">
          <div style="background: linear-gradient(135deg, #ef4444, #dc2626); padding: 30px; border-radius: 12px; text-align: center; margin-bottom: 30px;">
            <h1 style="color: white; margin: 0; font-size: 24px;">⚠️ Usage Limit Reached</h1>
          </div>
          <p>Hi {user_name},</p>
          <p>You've reached <strong>100%</strong> of your monthly token limit.</p>
          <div style="background: #fef2f2; border: 1px solid #fecaca; border-radius: 8px; padding: 20px; margin: 20px 0;">
            <p style="margin: 0;"><strong>Usage:</strong> {usage_line}</p>
          </div>
          <p>To continue using our services, please upgrade your plan.</p>
          <p style="color: #6b7280; font-size: 14px;">Contact us at {support} for help.</p>
        </body>
        </html>
        """
        return subject, body

    remaining = max(0, max_tokens - current_tokens)
    subject = f"📊 Usage Alert - {threshold}% of Limit Reached"
    body = f"""
    <!DOCTYPE html>
    <html>
    <body style="{_BODY_STYLE}">
      <div style="background: linear-gradient(135deg, #f59e0b, #d97706); padding: 30px; border-radius: 12px; text-align: center; margin-bottom: 30px;">
        <h1 style="color: white; margin: 0; font-size: 24px;">📊 Usage Alert</h1>
      </div>
      <p>Hi {user_name},</p>
      <p>You've used <strong>{percent_of(current_tokens, max_tokens)}%</strong> of your monthly token limit.</p>
      <div style="background: #fffbeb; border: 1px solid #fde68a; border-radius: 8px; padding: 20px; margin: 20px 0;">
        <p style="margin: 0;"><strong>Usage:</strong> {usage_line}</p>
        <p style="margin: 5px 0 0;"><strong>Remaining:</strong> {remaining:,} tokens</p>
      </div>
      <p>Consider upgrading your plan if you need more tokens.</p>
      <p style="color: #6b7280; font-size: 14px;">Contact us at {support} for help.</p>
    </body>
    </html>
    """
    return subject, body


def send_usage_alert_email(
    email: str,
    full_name: Optional[str],
    current_tokens: int,
    max_tokens: int,
    threshold: int,
    support_email: str
) -> bool:
    """
    Send a usage threshold alert (80% warning or 100% limit reached).

    Returns:
        bool: True on success, False on failure
    """
    subject, html_content = render_usage_alert(
        full_name, current_tokens, max_tokens, threshold, support_email
    )
    return _send_email(email, subject, html_content)
