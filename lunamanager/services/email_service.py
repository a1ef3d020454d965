"""
LunaManager
Email Service — invitation and verification mails.

When SMTP is not configured (MAIL_SERVER unset), mails are logged and not
sent. That is the default for development and testing.

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">LunaManager</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "invitation": {
        "subject": "{inviter_name} invited you to {workspace_name}",
        "body": """
        <p style="color: #334155;">
            <strong>{inviter_name}</strong> invited you to join
            <strong>{workspace_name}</strong> as <strong>{role}</strong>.
        </p>
        <p style="color: #64748b;">{message}</p>
        <p><a href="{link}">Accept the invitation</a></p>
        <p style="color: #94a3b8; font-size: 12px;">This link expires on {expires_at}.</p>
        """,
    },
    "email_verification": {
        "subject": "Verify your LunaManager email address",
        "body": """
        <p style="color: #334155;">Hello {name},</p>
        <p style="color: #64748b;">Confirm your email address to finish setting up your account.</p>
        <p><a href="{link}">Verify email</a></p>
        <p style="color: #94a3b8; font-size: 12px;">This link expires in {hours} hours.</p>
        """,
    },
}


class EmailService:
    """SMTP sender with named templates; log-only without MAIL_SERVER."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def send(cls, *, to_email: str, subject: str, html_body: str, to_name: str | None = None) -> bool:
        """
        Send one mail.

        Returns True when the mail was delivered or logged in dev mode,
        False when SMTP delivery failed. Delivery failures never abort the
        calling request.
        """
        if not cls.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            return True

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            return False
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return True

    @classmethod
    def send_from_template(
        cls, *, to_email: str, template_name: str, context: dict[str, Any], to_name: str | None = None
    ) -> bool:
        template = _TEMPLATES.get(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return False

        subject = template["subject"].format_map(_SafeDict(context))
        body = template["body"].format_map(_SafeDict(context))
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=_LAYOUT.format(body=body),
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


# ── Convenience senders ─────────────────────────────────────────────────────

def send_invitation_email(invitation, workspace, inviter) -> bool:
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return EmailService.send_from_template(
        to_email=invitation.email,
        template_name="invitation",
        context={
            "inviter_name": inviter.name if inviter else "A LunaManager user",
            "workspace_name": workspace.name,
            "role": invitation.role,
            "message": invitation.message or "",
            "link": f"{base}/invitations/{invitation.token}",
            "expires_at": invitation.expires_at.strftime("%Y-%m-%d"),
        },
    )


def send_verification_email(user, raw_token: str) -> bool:
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return EmailService.send_from_template(
        to_email=user.email,
        to_name=user.name,
        template_name="email_verification",
        context={
            "name": user.name,
            "link": f"{base}/verify-email?token={raw_token}",
            "hours": current_app.config.get("EMAIL_VERIFICATION_EXPIRES_HOURS", 24),
        },
    )
