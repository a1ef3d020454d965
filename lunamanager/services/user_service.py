"""
User Service — sign-up, authentication, profile and email verification.

Callers commit; everything here flushes only.
"""

import logging
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from lunamanager.models import db
from lunamanager.models.auth import EmailVerificationToken, User
from lunamanager.services.jwt_service import hash_token, revoke_all_user_sessions
from lunamanager.utils.crypto import generate_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
PROFILE_FIELDS = ("name", "phone", "image")


class UserServiceError(Exception):
    """Auth-flow error carrying its own HTTP status (401 / 403 / 400)."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def normalize_email(email: str) -> str:
    """Validate and normalise an address; raises UserServiceError(400)."""
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise UserServiceError(f"Invalid email: {e}")


def get_user_by_id(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def get_user_by_email(email: str) -> User | None:
    return User.query.filter(db.func.lower(User.email) == (email or "").strip().lower()).first()


# ═══════════════════════════════════════════════════════════════
# Sign-up / login
# ═══════════════════════════════════════════════════════════════
def create_user(email: str, password: str, name: str, email_verified: bool = False) -> User:
    """Create a global user account. Raises UserServiceError (400 / 409)."""
    email = normalize_email(email)
    if not name or not name.strip():
        raise UserServiceError("Name is required")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise UserServiceError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if get_user_by_email(email):
        raise UserServiceError("A user with this email already exists", 409)

    user = User(
        email=email,
        name=name.strip(),
        password_hash=hash_password(password),
        email_verified=email_verified,
        status="active",
    )
    db.session.add(user)
    db.session.flush()
    logger.info("User %s created (%s)", user.id, email)
    return user


def authenticate_user(email: str, password: str) -> User:
    """
    Check credentials.

    Raises:
        UserServiceError(401): unknown email or wrong password.
        UserServiceError(403): account not active.
    """
    user = get_user_by_email(email)
    if not user or not verify_password(password or "", user.password_hash):
        logger.warning("Failed login for %s", email)
        raise UserServiceError("Invalid email or password", 401)
    if user.status != "active":
        raise UserServiceError(f"Account is {user.status}", 403)

    user.last_login_at = datetime.now(timezone.utc)
    db.session.flush()
    return user


# ═══════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════
def update_profile(user: User, data: dict) -> User:
    if "name" in data and not (data.get("name") or "").strip():
        raise UserServiceError("Name cannot be empty")
    for key in PROFILE_FIELDS:
        if key in data:
            value = data[key]
            setattr(user, key, value.strip() if isinstance(value, str) else value)
    db.session.flush()
    return user


def change_password(user: User, current_password: str, new_password: str) -> int:
    """Set a new password and revoke every session. Returns revoked count."""
    if not verify_password(current_password or "", user.password_hash):
        raise UserServiceError("Current password is incorrect", 403)
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise UserServiceError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")

    user.password_hash = hash_password(new_password)
    revoked = revoke_all_user_sessions(user.id)
    logger.info("User %s changed password; %d sessions revoked", user.id, revoked)
    return revoked


# ═══════════════════════════════════════════════════════════════
# Email verification
# ═══════════════════════════════════════════════════════════════
def issue_verification_token(user: User) -> str:
    """Store the hash of a fresh token and return the raw value for the email link."""
    raw = generate_token()
    db.session.add(EmailVerificationToken(
        user_id=user.id,
        token_hash=hash_token(raw),
        expires_at=datetime.now(timezone.utc) + timedelta(
            hours=current_app.config.get("EMAIL_VERIFICATION_EXPIRES_HOURS", 24)
        ),
    ))
    db.session.flush()
    return raw


def verify_email(raw_token: str) -> User:
    record = EmailVerificationToken.query.filter_by(token_hash=hash_token(raw_token or "")).first()
    if record is None or record.used_at is not None:
        raise UserServiceError("Invalid verification token")
    if record.is_expired:
        raise UserServiceError("Verification token has expired")

    user = db.session.get(User, record.user_id)
    user.email_verified = True
    record.used_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info("User %s verified email", user.id)
    return user


def resend_verification(user: User) -> str:
    """Invalidate outstanding tokens and issue a new one."""
    if user.email_verified:
        raise UserServiceError("Email is already verified")
    now = datetime.now(timezone.utc)
    EmailVerificationToken.query.filter_by(user_id=user.id, used_at=None).update(
        {"used_at": now}, synchronize_session=False
    )
    return issue_verification_token(user)
