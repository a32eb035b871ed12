import hashlib
import logging
import os
import re
import ssl
import smtplib
import secrets
from email.message import EmailMessage
from datetime import timedelta
from typing import Dict

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from auth.policies import Principal
from auth.token import create_access_token
from db import SessionLocal
from models import EmailVerification, User, utcnow
from services.profile_service import ensure_profile
from utils.errors import BadRequest

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
EMAIL_FROM = os.getenv("EMAIL_FROM", SMTP_USER or "")
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "MyGarage.bio")
PIN_TTL_MINUTES = int(os.getenv("AUTH_PIN_TTL_MINUTES", "10"))
PURPOSE = "sign_in"

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# ────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────
def normalize_email(email) -> str:
    """Lowercased, trimmed address; '' when it does not look like an email."""
    value = email.strip().lower() if isinstance(email, str) else ""
    if len(value) > 254 or not _EMAIL_PATTERN.match(value):
        return ""
    return value

def _generate_pin() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"

def _hash_pin(email: str, pin: str) -> str:
    return hashlib.sha256(f"{email}:{pin}".encode("utf-8")).hexdigest()

def _send_email(to: str, subject: str, body: str, html_body: str = None) -> None:
    if not all([SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, EMAIL_FROM]):
        raise RuntimeError("SMTP configuration missing")

    msg = EmailMessage()
    msg["From"] = f'{EMAIL_FROM_NAME} <{EMAIL_FROM}>'
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")

    context = ssl.create_default_context()
    if SMTP_PORT == 465:
        with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, context=context) as server:
            server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg, from_addr=EMAIL_FROM, to_addrs=[to])
    else:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls(context=context)
            server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg, from_addr=EMAIL_FROM, to_addrs=[to])

def _build_html_email(pin: str, ttl_minutes: int) -> str:
    return f"""
<!DOCTYPE html>
<html>
<body style="margin: 0; padding: 40px 20px; background-color: #121212; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width: 480px; margin: 0 auto; background-color: #1E1E1E; border-radius: 16px;">
        <tr>
            <td style="padding: 30px 40px; color: #B0B0B0; font-size: 16px;">
                Your {EMAIL_FROM_NAME} sign-in code is:
                <div style="margin: 20px 0; padding: 20px; text-align: center; background-color: #2A2A2A; border-radius: 12px; font-size: 36px; font-weight: 700; letter-spacing: 8px; color: #FFFFFF;">{pin}</div>
                <p style="color: #808080; font-size: 14px;">This code expires in {ttl_minutes} minutes. If you didn't request it, you can ignore this email.</p>
            </td>
        </tr>
    </table>
</body>
</html>
"""

# ────────────────────────────────────────────────────────────
# Sign-in flow
# ────────────────────────────────────────────────────────────
def create_sign_in_pin(email: str, ttl_minutes: int = PIN_TTL_MINUTES) -> str:
    """
    Replace any pending sign-in PIN for `email`, store its hash with expiry,
    and email it. Returns the PIN (useful for tests; never log it).
    """
    email_lc = normalize_email(email)
    if not email_lc:
        raise BadRequest("Enter a valid email address.")

    pin = _generate_pin()
    with SessionLocal() as db:
        db.execute(
            delete(EmailVerification).where(
                EmailVerification.email == email_lc, EmailVerification.purpose == PURPOSE
            )
        )
        db.add(EmailVerification(
            email=email_lc,
            pin_hash=_hash_pin(email_lc, pin),
            purpose=PURPOSE,
            expires_at=utcnow() + timedelta(minutes=ttl_minutes),
        ))
        db.commit()

    try:
        _send_email(
            to=email_lc,
            subject=f"Your {EMAIL_FROM_NAME} sign-in code",
            body=f"Your sign-in code is {pin}. It expires in {ttl_minutes} minutes.",
            html_body=_build_html_email(pin, ttl_minutes),
        )
    except Exception:
        logger.exception("Failed to send sign-in email")
    return pin

def _get_or_create_user(db, email: str) -> User:
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user:
        return user
    user = User(email=email)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # concurrent first sign-in for the same address
        db.rollback()
        return db.execute(select(User).where(User.email == email)).scalar_one()
    return user

def verify_sign_in_pin(email: str, pin: str) -> Dict:
    """Consume a valid PIN, provision user + profile, and return an access token."""
    email_lc = normalize_email(email)
    pin = (pin or "").strip() if isinstance(pin, str) else ""
    if not email_lc or not pin:
        raise BadRequest("Email and code are required.")

    with SessionLocal() as db:
        deleted = db.execute(
            delete(EmailVerification).where(
                EmailVerification.email == email_lc,
                EmailVerification.purpose == PURPOSE,
                EmailVerification.pin_hash == _hash_pin(email_lc, pin),
                EmailVerification.expires_at > utcnow(),
            )
        ).rowcount
        if not deleted:
            db.rollback()
            raise BadRequest("Invalid or expired code.")
        db.commit()

        user = _get_or_create_user(db, email_lc)
        user_id = user.id

    profile = ensure_profile(Principal(user_id=user_id), email_lc)
    return {
        "access_token": create_access_token(str(user_id)),
        "token_type": "bearer",
        "user": {"id": str(user_id), "email": email_lc},
        "profile": profile,
    }
