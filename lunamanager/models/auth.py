"""
Auth Models — users, refresh-token sessions, email verification tokens.

Users are global: one account can own several workspaces and be a member
of others. Workspace roles live on WorkspaceMember, module permissions in
the rbac tables.
"""

import uuid
from datetime import datetime, timezone

from lunamanager.models import db

USER_STATUSES = {"active", "inactive", "suspended"}


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256))
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(30))
    image = db.Column(db.String(500))
    email_verified = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    sessions = db.relationship(
        "Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "image": self.image,
            "email_verified": self.email_verified,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_brief(self):
        return {"id": self.id, "name": self.name, "email": self.email, "image": self.image}


# ═══════════════════════════════════════════════════════════════
# 2. SESSIONS (refresh tokens)
# ═══════════════════════════════════════════════════════════════
class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = db.Column(db.String(256), nullable=False)  # SHA-256 of refresh token
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > self.expires_at.replace(tzinfo=timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. EMAIL VERIFICATION TOKENS
# ═══════════════════════════════════════════════════════════════
class EmailVerificationToken(db.Model):
    __tablename__ = "email_verification_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > self.expires_at.replace(tzinfo=timezone.utc)
