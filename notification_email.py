"""
Account email
Password reset codes and new-account credentials, sent over SMTP with the
MAIL_* settings of the running app (see config.Config).
"""

import smtplib
import socket
import logging
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Tuple, Optional

from flask import current_app

logger = logging.getLogger(__name__)


def _mail_settings():
    cfg = current_app.config
    return {
        'host': cfg.get('MAIL_SERVER'),
        'port': cfg.get('MAIL_PORT', 587),
        'user': cfg.get('MAIL_USERNAME'),
        'password': cfg.get('MAIL_PASSWORD'),
        'use_tls': cfg.get('MAIL_USE_TLS', True),
        'use_ssl': cfg.get('MAIL_USE_SSL', False),
        'timeout': cfg.get('MAIL_TIMEOUT', 20),
        'sender_name': cfg.get('MAIL_SENDER_NAME') or cfg.get('PORTAL_NAME', 'College Portal'),
    }


def mail_enabled() -> bool:
    settings = _mail_settings()
    return all((settings['host'], settings['user'], settings['password']))


def _build_message(settings, to_email, subject, plain_body, html_body):
    message = EmailMessage()
    message['Subject'] = subject
    message['From'] = formataddr((settings['sender_name'], settings['user']))
    message['To'] = to_email
    message['Date'] = formatdate(localtime=True)
    message['Message-ID'] = make_msgid()
    message.set_content(plain_body)
    if html_body:
        message.add_alternative(html_body, subtype='html')
    return message


def deliver(to_email: str, subject: str, plain_body: str, html_body: Optional[str] = None) -> Tuple[bool, str]:
    """
    Send one message. Never raises for delivery problems; the caller gets
    (ok, detail) and decides whether the failure matters.
    """
    if not to_email or '@' not in to_email:
        return False, "No valid email address"
    if not mail_enabled():
        logger.warning("Mail is not configured (MAIL_SERVER / MAIL_USERNAME / MAIL_PASSWORD); not sending")
        return False, "Email not configured"

    settings = _mail_settings()
    message = _build_message(settings, to_email, subject, plain_body, html_body)
    smtp_class = smtplib.SMTP_SSL if settings['use_ssl'] else smtplib.SMTP

    try:
        with smtp_class(settings['host'], settings['port'], timeout=settings['timeout']) as server:
            if settings['use_tls'] and not settings['use_ssl']:
                server.starttls()
            server.login(settings['user'], settings['password'])
            server.send_message(message)
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP login refused for {settings['user']}: {e}")
        return False, "SMTP authentication failed"
    except (smtplib.SMTPException, socket.error) as e:
        logger.error(f"Could not send '{subject}' to {to_email}: {e}")
        return False, str(e)

    logger.info(f"Sent '{subject}' to {to_email}")
    return True, "Email sent"


def send_password_reset_email(to_email: str, reset_code: str, user_name: str = "User") -> Tuple[bool, str]:
    """Send the 6-digit password reset code."""
    portal = _mail_settings()['sender_name']
    ttl = current_app.config.get('RESET_CODE_TTL_MINUTES', 15)

    plain_body = (
        f"Dear {user_name},\n\n"
        f"Your {portal} password reset code is: {reset_code}\n\n"
        f"It expires in {ttl} minutes. If you did not ask to reset your password you can ignore this email.\n"
    )
    html_body = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6;">
        <p>Dear <strong>{user_name}</strong>,</p>
        <p>Your {portal} password reset code is:</p>
        <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{reset_code}</p>
        <p>It expires in {ttl} minutes. If you did not ask to reset your password you can ignore this email.</p>
    </div>
    """
    return deliver(to_email, f"{portal}: password reset code", plain_body, html_body)


def send_account_created_email(to_email: str, user_name: str, username: str, password: str) -> Tuple[bool, str]:
    portal = _mail_settings()['sender_name']

    plain_body = (
        f"Hello {user_name},\n\n"
        f"An account has been created for you on {portal}.\n\n"
        f"Username: {username}\n"
        f"Temporary password: {password}\n\n"
        "Sign in and change this password straight away.\n"
    )
    html_body = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6;">
        <p>Hello <strong>{user_name}</strong>,</p>
        <p>An account has been created for you on {portal}.</p>
        <table cellpadding="4">
            <tr><td>Username</td><td><strong>{username}</strong></td></tr>
            <tr><td>Temporary password</td><td><strong>{password}</strong></td></tr>
        </table>
        <p>Sign in and change this password straight away.</p>
    </div>
    """
    return deliver(to_email, f"Your {portal} account", plain_body, html_body)
