"""
LunaManager
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

from cryptography.fernet import Fernet

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Local SQLite file when no DATABASE_URL is given
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'lunamanager_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random per-process key for development; production must pin SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)


def _database_url(default=None):
    # Heroku-style postgres:// is rejected by SQLAlchemy 2.x
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # JWT lifetimes (seconds)
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))
    JWT_REFRESH_EXPIRES = int(os.getenv("JWT_REFRESH_EXPIRES", "604800"))

    # Invitations / verification links
    INVITATION_EXPIRES_DAYS = int(os.getenv("INVITATION_EXPIRES_DAYS", "7"))
    EMAIL_VERIFICATION_EXPIRES_HOURS = int(os.getenv("EMAIL_VERIFICATION_EXPIRES_HOURS", "24"))
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")

    # Fernet key for encrypted columns (employee national ids)
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")

    # Request guard
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    # Redis (rate limiter storage)
    REDIS_URL = os.getenv("REDIS_URL", "")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Email / SMTP (optional; unset MAIL_SERVER means log-only)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@lunamanager.local")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    MAIL_SERVER = None
    # bcrypt at 12 rounds dominates test time
    BCRYPT_ROUNDS = 4
    ENCRYPTION_KEY = Fernet.generate_key().decode()


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
