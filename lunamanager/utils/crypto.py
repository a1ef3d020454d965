"""
Crypto utilities — bcrypt password hashing, Fernet encryption & random tokens.

Password hashing:
  bcrypt ($2b$) for every new hash. Legacy werkzeug (scrypt/pbkdf2) hashes
  from imported user records still verify.

Symmetric encryption:
  `encrypt_secret` / `decrypt_secret` use Fernet (AES-128-CBC + HMAC-SHA256)
  keyed by the ENCRYPTION_KEY config value. Employee national ids are
  stored this way.

  ENCRYPTION_KEY must be a 32-byte URL-safe base64 key generated via:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

Tokens:
  `generate_token` returns 64 hex chars for invitation and email
  verification links.
"""

import secrets

import bcrypt
from cryptography.fernet import Fernet
from flask import current_app, has_app_context
from werkzeug.security import check_password_hash

DEFAULT_ROUNDS = 12


def _rounds() -> int:
    if has_app_context():
        return current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS)
    return DEFAULT_ROUNDS


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds unless configured)."""
    salt = bcrypt.gensalt(rounds=_rounds())
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against a bcrypt or werkzeug hash."""
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_token() -> str:
    """64 hex chars of URL-safe randomness."""
    return secrets.token_hex(32)


# ── Fernet symmetric encryption ──────────────────────────────────────────────


def _get_fernet() -> Fernet:
    """Return a Fernet instance keyed by ENCRYPTION_KEY.

    Raises RuntimeError when the key is missing so sensitive columns are
    never written as plaintext.
    """
    raw_key = current_app.config.get("ENCRYPTION_KEY") if has_app_context() else None
    if not raw_key:
        raise RuntimeError(
            "ENCRYPTION_KEY is not set. "
            "Generate one with: python -c \""
            "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
        )
    return Fernet(raw_key.encode() if isinstance(raw_key, str) else raw_key)


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a value for storage in a TEXT column (URL-safe base64)."""
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str) -> str:
    """Reverse of encrypt_secret.

    Raises:
        RuntimeError: If ENCRYPTION_KEY is not set.
        cryptography.fernet.InvalidToken: If the value was tampered with or
            encrypted under another key.
    """
    return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
