import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Optional

import resend
from resend.exceptions import ResendError

from echo88.core.config import get_settings


logger = logging.getLogger(__name__)

SANDBOX_GUIDANCE = (
    "The email provider is in test mode and can only deliver to the account owner's "
    "address. Verify a sending domain to deliver to other recipients."
)


class EmailDeliveryError(Exception):
    """The provider refused or failed to deliver a message."""


class EmailSandboxError(EmailDeliveryError):
    """Resend test mode: only the account owner's address is deliverable."""


def _build_smtp_client():
    settings = get_settings()
    if not settings.SMTP_HOST:
        return None
    host = settings.SMTP_HOST
    port = settings.SMTP_PORT
    if settings.SMTP_USE_SSL:
        return smtplib.SMTP_SSL(host, port, timeout=30)
    client = smtplib.SMTP(host, port, timeout=30)
    if settings.SMTP_USE_TLS:
        client.starttls()
    return client


def _send_via_resend(to_email: str, subject: str, html: str) -> None:
    settings = get_settings()
    resend.api_key = settings.RESEND_API_KEY
    try:
        resend.Emails.send(
            {
                "from": settings.RESEND_FROM,
                "to": [to_email],
                "subject": subject,
                "html": html,
            }
        )
    except ResendError as exc:
        code = str(getattr(exc, "code", ""))
        error_type = getattr(exc, "error_type", "")
        logger.error("[email:resend:error] code=%s type=%s %s", code, error_type, exc)
        if code == "403" and error_type != "invalid_api_key":
            raise EmailSandboxError(str(exc)) from exc
        raise EmailDeliveryError(str(exc)) from exc
    except Exception as exc:
        logger.error("[email:resend:error] %s", exc)
        raise EmailDeliveryError(str(exc)) from exc
    logger.info("[email:resend] sent to=%s subject=%s", to_email, subject)


def _send_via_smtp(to_email: str, subject: str, html: str) -> None:
    settings = get_settings()
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM or settings.RESEND_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")

    try:
        client = _build_smtp_client()
        try:
            if settings.SMTP_USER and settings.SMTP_PASSWORD:
                client.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            client.send_message(msg)
        finally:
            try:
                client.quit()
            except smtplib.SMTPException:
                pass
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("[email:smtp:error] %s", exc)
        raise EmailDeliveryError(str(exc)) from exc
    logger.info("[email:smtp] sent to=%s subject=%s", to_email, subject)


def send_email(to_email: str, subject: str, html: str, link: Optional[str] = None) -> None:
    """Deliver through Resend, else SMTP, else only log (development).

    Raises EmailDeliveryError (or EmailSandboxError) when a configured
    provider fails.
    """
    settings = get_settings()
    if settings.RESEND_API_KEY:
        _send_via_resend(to_email, subject, html)
        return
    if settings.SMTP_HOST:
        _send_via_smtp(to_email, subject, html)
        return
    logger.info("[email:log_only] to=%s subject=%s link=%s", to_email, subject, link or "-")


def _layout(title: str, body: str) -> str:
    app_name = get_settings().APP_NAME
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
  </head>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
      <h1 style="color: white; margin: 0; font-size: 28px;">{app_name}</h1>
    </div>
    <div style="background: #ffffff; padding: 40px; border-radius: 0 0 10px 10px; box-shadow: 0 2px 10px rgba(0,0,0,0.1);">
      {body}
    </div>
  </body>
</html>
"""


def _button(url: str, label: str) -> str:
    return (
        '<div style="text-align: center; margin: 30px 0;">'
        f'<a href="{url}" style="background: #667eea; color: white; padding: 14px 28px; '
        f'text-decoration: none; border-radius: 6px; display: inline-block; font-weight: 600;">{label}</a>'
        "</div>"
        '<p style="color: #666; font-size: 14px;">Or copy and paste this link into your browser:</p>'
        f'<p style="color: #667eea; word-break: break-all; font-size: 12px;">{url}</p>'
    )


def send_verification_email(email: str, token: str) -> None:
    settings = get_settings()
    link = f"{settings.APP_URL}/verify-email?token={token}"
    body = (
        f'<h2 style="margin-top: 0;">Welcome to {settings.APP_NAME}!</h2>'
        "<p>Thanks for signing up. Please confirm your email address to finish creating your account:</p>"
        f"{_button(link, 'Verify email')}"
        f'<p style="color: #999; font-size: 12px;">This link expires in {settings.EMAIL_VERIFICATION_TTL_HOURS} hours. '
        "If you did not create an account, ignore this email.</p>"
    )
    send_email(email, f"Verify your email - {settings.APP_NAME}", _layout("Verify email", body), link=link)


def send_reset_email(email: str, token: str) -> None:
    settings = get_settings()
    link = f"{settings.APP_URL}/reset-password?token={token}"
    body = (
        '<h2 style="margin-top: 0;">Reset your password</h2>'
        "<p>We received a request to reset your password. Choose a new one with the button below:</p>"
        f"{_button(link, 'Reset password')}"
        f'<p style="color: #999; font-size: 12px;">This link expires in {settings.PASSWORD_RESET_TTL_MINUTES} minutes. '
        "If you did not ask for a reset, ignore this email.</p>"
    )
    send_email(email, f"Reset your password - {settings.APP_NAME}", _layout("Reset password", body), link=link)


def send_login_notification(email: str, device: str, browser: str, ip: str, location: Optional[str] = None) -> None:
    settings = get_settings()
    rows = [
        f'<p style="margin: 5px 0;"><strong>Device:</strong> {escape(device)}</p>',
        f'<p style="margin: 5px 0;"><strong>Browser:</strong> {escape(browser)}</p>',
        f'<p style="margin: 5px 0;"><strong>IP:</strong> {escape(ip)}</p>',
    ]
    if location:
        rows.append(f'<p style="margin: 5px 0;"><strong>Location:</strong> {escape(location)}</p>')
    body = (
        '<h2 style="margin-top: 0;">New login detected</h2>'
        "<p>A new session was started on your account:</p>"
        f'<div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">{"".join(rows)}</div>'
        '<p style="color: #d32f2f; font-size: 14px;"><strong>If this was not you, change your password now.</strong></p>'
    )
    send_email(email, f"New login detected - {settings.APP_NAME}", _layout("New login", body))
