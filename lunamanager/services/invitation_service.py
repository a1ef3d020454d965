"""
Invitation Service — invite by email, resend, cancel, accept, decline.

Tokens are 64 hex chars, single use. A pending invitation past its
expires_at reads as ``expired`` everywhere and is marked so when someone
tries to accept it.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from lunamanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.company import Company
from lunamanager.models.invitation import INVITATION_ROLES, INVITATION_TYPES, Invitation
from lunamanager.models.workspace import Workspace, WorkspaceMember
from lunamanager.services.activity_service import record_activity
from lunamanager.services.email_service import send_invitation_email
from lunamanager.services.user_service import (
    UserServiceError,
    create_user,
    get_user_by_email,
    normalize_email,
)
from lunamanager.services.workspace_service import find_company, workspace_companies_query
from lunamanager.utils.crypto import generate_token

logger = logging.getLogger(__name__)

RESENDABLE_STATUSES = ("pending", "expired")


class InvitationError(Exception):
    """Public accept/decline flow error with its HTTP status."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _expiry() -> datetime:
    days = current_app.config.get("INVITATION_EXPIRES_DAYS", 7)
    return datetime.now(timezone.utc) + timedelta(days=days)


def _new_token() -> str:
    token = generate_token()
    while Invitation.query.filter_by(token=token).first():
        token = generate_token()
    return token


# ═════════════════════════════════════════════════════════════════════════════
# Workspace side (owner / admin)
# ═════════════════════════════════════════════════════════════════════════════

def list_invitations(workspace_id: int, status: str | None = None) -> list[Invitation]:
    rows = (
        Invitation.query.filter_by(workspace_id=workspace_id)
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
        .all()
    )
    if status:
        # effective_status folds stale pending rows into "expired"
        rows = [i for i in rows if i.effective_status == status]
    return rows


def get_invitation(workspace_id: int, invitation_id) -> Invitation:
    invitation = Invitation.query.filter_by(id=invitation_id, workspace_id=workspace_id).first()
    if invitation is None:
        raise NotFoundError("Invitation", invitation_id, workspace_id=workspace_id)
    return invitation


def create_invitation(workspace: Workspace, inviter, data: dict) -> Invitation:
    """
    Store a pending invitation and send its email.

    Raises:
        ValidationError: bad email, role or type; company type without company.
        ConflictError: already a member, or a pending invitation exists.
        NotFoundError: company not linked to the workspace.
    """
    try:
        email = normalize_email(data.get("email"))
    except UserServiceError as e:
        raise ValidationError(e.message)

    role = data.get("role") or "member"
    if role not in INVITATION_ROLES:
        raise ValidationError(f"Invalid role: {role}", details={"allowed": sorted(INVITATION_ROLES)})
    inv_type = data.get("type") or ("company" if data.get("company_id") else "workspace")
    if inv_type not in INVITATION_TYPES:
        raise ValidationError(f"Invalid type: {inv_type}", details={"allowed": sorted(INVITATION_TYPES)})

    company = None
    if inv_type == "company":
        if not data.get("company_id"):
            raise ValidationError("company_id is required for company invitations")
        company = find_company(workspace.id, data["company_id"])
        if company is None:
            raise NotFoundError("Company", data["company_id"], workspace_id=workspace.id)

    existing_user = get_user_by_email(email)
    if existing_user and (
        existing_user.id == workspace.owner_id
        or WorkspaceMember.query.filter_by(workspace_id=workspace.id, user_id=existing_user.id).first()
    ):
        raise ConflictError("WorkspaceMember", "email", email)

    pending = [
        i for i in Invitation.query.filter_by(workspace_id=workspace.id, email=email, status="pending").all()
        if not i.is_expired
    ]
    if pending:
        raise ConflictError("Invitation", "email", email)

    invitation = Invitation(
        email=email,
        token=_new_token(),
        type=inv_type,
        status="pending",
        role=role,
        workspace_id=workspace.id,
        company_id=company.id if company else None,
        invited_by=inviter.id,
        expires_at=_expiry(),
        message=data.get("message"),
    )
    db.session.add(invitation)
    db.session.flush()

    send_invitation_email(invitation, workspace, inviter)
    logger.info("Invitation %s sent to %s for workspace %s", invitation.id, email, workspace.id)
    return invitation


def resend_invitation(invitation: Invitation, inviter) -> Invitation:
    if invitation.effective_status not in RESENDABLE_STATUSES:
        raise ValidationError(f"Cannot resend a {invitation.effective_status} invitation")
    invitation.token = _new_token()
    invitation.expires_at = _expiry()
    invitation.status = "pending"
    db.session.flush()
    send_invitation_email(invitation, invitation.workspace, inviter)
    logger.info("Invitation %s resent", invitation.id)
    return invitation


def cancel_invitation(invitation: Invitation) -> Invitation:
    if invitation.status != "pending":
        raise ValidationError(f"Cannot cancel a {invitation.status} invitation")
    invitation.status = "cancelled"
    invitation.responded_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info("Invitation %s cancelled", invitation.id)
    return invitation


# ═════════════════════════════════════════════════════════════════════════════
# Public side (token holder)
# ═════════════════════════════════════════════════════════════════════════════

def get_by_token(token: str) -> Invitation:
    invitation = Invitation.query.filter_by(token=token).first()
    if invitation is None:
        raise NotFoundError("Invitation", message="Invitation not found")
    return invitation


def public_view(invitation: Invitation) -> dict:
    d = invitation.to_dict()
    d["workspace_name"] = invitation.workspace.name if invitation.workspace else None
    d["company_name"] = invitation.company.name if invitation.company else None
    d["inviter"] = invitation.inviter.to_brief() if invitation.inviter else None
    return d


def get_pending_by_token(token: str) -> Invitation:
    invitation = Invitation.query.filter_by(token=token, status="pending").first()
    if invitation is None:
        raise InvitationError("Invitation not found or already used", 404)
    return invitation


def mark_expired(invitation: Invitation) -> None:
    invitation.status = "expired"
    db.session.flush()


def accept_invitation(invitation: Invitation, data: dict):
    """
    Join the workspace through a pending, unexpired invitation.

    Creates the user when the email has no account yet (name + password
    required). Returns (user, workspace, company, created).
    """
    user = get_user_by_email(invitation.email)
    created = user is None
    if created:
        name = (data.get("name") or "").strip()
        password = data.get("password") or ""
        if not name or not password:
            raise InvitationError("Name and password are required for new users")
        try:
            # The link was delivered to this address, so it counts as verified
            user = create_user(invitation.email, password, name, email_verified=True)
        except UserServiceError as e:
            raise InvitationError(e.message, e.status_code)

    workspace = invitation.workspace
    if user.id == workspace.owner_id or WorkspaceMember.query.filter_by(
        workspace_id=workspace.id, user_id=user.id
    ).first():
        raise InvitationError("User is already a member of this workspace")

    permissions = {}
    if invitation.type == "company" and invitation.company_id:
        permissions["restrictedToCompany"] = invitation.company_id
    db.session.add(WorkspaceMember(
        workspace_id=workspace.id,
        user_id=user.id,
        role=invitation.role,
        invited_by=invitation.invited_by,
        invite_status="accepted",
        permissions=permissions,
    ))

    invitation.status = "accepted"
    invitation.responded_at = datetime.now(timezone.utc)
    invitation.accepted_by = user.id
    db.session.flush()

    company = None
    if invitation.company_id:
        company = db.session.get(Company, invitation.company_id)
    if company is None:
        company = workspace_companies_query(workspace.id).order_by(Company.id).first()

    record_activity(
        "workspace.member_join", user_id=user.id, workspace_id=workspace.id,
        company_id=invitation.company_id, resource_type="invitation", resource_id=invitation.id,
        metadata={"role": invitation.role},
    )
    logger.info("Invitation %s accepted by user %s", invitation.id, user.id)
    return user, workspace, company, created


def decline_invitation(invitation: Invitation) -> Invitation:
    invitation.status = "declined"
    invitation.responded_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info("Invitation %s declined", invitation.id)
    return invitation
