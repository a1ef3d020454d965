"""
HR Service — employee onboarding, profiles, documents and position history.

Profiles are keyed by (workspace, company, user); the user must already be
a member of the workspace. National ids are encrypted at rest and only
decrypted when serialising a single profile.
"""

import logging
from datetime import date

from cryptography.fernet import InvalidToken
from sqlalchemy import or_

from lunamanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.auth import User
from lunamanager.models.company import Department, Unit
from lunamanager.models.hr import (
    EMPLOYMENT_TYPES,
    EmployeeFile,
    EmployeePositionChange,
    EmployeeProfile,
)
from lunamanager.models.workspace import WorkspaceMember
from lunamanager.utils.crypto import decrypt_secret, encrypt_secret
from lunamanager.utils.helpers import parse_date

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "gender", "address", "phone", "emergency_contact_name", "emergency_contact_phone",
    "position", "manager_id", "employment_type", "notes",
)
DATE_FIELDS = ("birth_date", "start_date", "end_date")


# ── Internals ───────────────────────────────────────────────────────────────

def _check_department_unit(company_id: int, department_id, unit_id):
    """Both ids, when given, must belong to the company (404 otherwise)."""
    department = None
    if department_id is not None:
        department = Department.query.filter_by(id=department_id, company_id=company_id).first()
        if department is None:
            raise NotFoundError("Department", department_id)
    if unit_id is not None:
        unit = (
            Unit.query.join(Department, Department.id == Unit.department_id)
            .filter(Unit.id == unit_id, Department.company_id == company_id)
            .first()
        )
        if unit is None:
            raise NotFoundError("Unit", unit_id)
        if department is not None and unit.department_id != department.id:
            raise ValidationError("Unit does not belong to the selected department")


def _apply(profile: EmployeeProfile, data: dict) -> None:
    if "employment_type" in data and data["employment_type"] not in EMPLOYMENT_TYPES:
        raise ValidationError(
            f"Invalid employment_type: {data['employment_type']}",
            details={"allowed": sorted(EMPLOYMENT_TYPES)},
        )
    for field in PROFILE_FIELDS:
        if field in data:
            setattr(profile, field, data[field])
    for field in DATE_FIELDS:
        if field in data:
            setattr(profile, field, parse_date(data[field]))
    for field in ("department_id", "unit_id"):
        if field in data:
            setattr(profile, field, data[field])
    if "national_id" in data:
        value = data["national_id"]
        profile.national_id_encrypted = encrypt_secret(str(value)) if value else None

    if profile.start_date and profile.end_date and profile.end_date < profile.start_date:
        raise ValidationError("end_date cannot be before start_date")


def reveal_national_id(profile: EmployeeProfile) -> str | None:
    if not profile.national_id_encrypted:
        return None
    try:
        return decrypt_secret(profile.national_id_encrypted)
    except InvalidToken:
        logger.error("Employee profile %s: national id cannot be decrypted", profile.id)
        return None


def serialize(profile: EmployeeProfile) -> dict:
    return profile.to_dict(national_id=reveal_national_id(profile))


# ═════════════════════════════════════════════════════════════════════════════
# Profiles
# ═════════════════════════════════════════════════════════════════════════════

def list_employees(workspace_id: int, company_id: int, filters: dict | None = None) -> list[dict]:
    """Profile + member role + user + department, ordered by user name."""
    filters = filters or {}
    q = (
        db.session.query(EmployeeProfile, WorkspaceMember.role, User, Department.name)
        .join(User, User.id == EmployeeProfile.user_id)
        .outerjoin(
            WorkspaceMember,
            (WorkspaceMember.workspace_id == EmployeeProfile.workspace_id)
            & (WorkspaceMember.user_id == EmployeeProfile.user_id),
        )
        .outerjoin(Department, Department.id == EmployeeProfile.department_id)
        .filter(
            EmployeeProfile.workspace_id == workspace_id,
            EmployeeProfile.company_id == company_id,
        )
    )
    search = (filters.get("search") or "").strip().lower()
    if search:
        term = f"%{search}%"
        q = q.filter(or_(
            db.func.lower(User.name).like(term),
            db.func.lower(User.email).like(term),
            db.func.lower(EmployeeProfile.position).like(term),
        ))
    if filters.get("department_id"):
        q = q.filter(EmployeeProfile.department_id == int(filters["department_id"]))

    result = []
    for profile, role, user, department_name in q.order_by(User.name).all():
        result.append({
            "id": profile.id,
            "user_id": user.id,
            "name": user.name,
            "email": user.email,
            "image": user.image,
            "workspace_role": role,
            "position": profile.position,
            "department_id": profile.department_id,
            "department_name": department_name,
            "unit_id": profile.unit_id,
            "employment_type": profile.employment_type,
            "start_date": profile.start_date.isoformat() if profile.start_date else None,
            "end_date": profile.end_date.isoformat() if profile.end_date else None,
        })
    return result


def get_employee(workspace_id: int, company_id: int, profile_id) -> EmployeeProfile:
    profile = EmployeeProfile.query_for_scope(workspace_id, company_id).filter_by(id=profile_id).first()
    if profile is None:
        raise NotFoundError("Employee", profile_id, workspace_id=workspace_id)
    return profile


def onboard_employee(workspace_id: int, company_id: int, data: dict) -> EmployeeProfile:
    """
    Create the HR profile of an existing workspace member.

    Raises:
        ValidationError: user is not a workspace member, bad dates or type.
        ConflictError: a profile already exists for this user here.
        NotFoundError: department / unit outside the company.
    """
    user_id = data.get("user_id")
    member = WorkspaceMember.query.filter_by(workspace_id=workspace_id, user_id=user_id).first()
    if member is None:
        raise ValidationError("User is not a member of this workspace")
    existing = EmployeeProfile.query_for_scope(workspace_id, company_id).filter_by(user_id=user_id).first()
    if existing:
        raise ConflictError("EmployeeProfile", "user_id", user_id)

    _check_department_unit(company_id, data.get("department_id"), data.get("unit_id"))

    profile = EmployeeProfile(workspace_id=workspace_id, company_id=company_id, user_id=user_id)
    _apply(profile, data)
    if not profile.employment_type:
        profile.employment_type = "full_time"
    db.session.add(profile)
    db.session.flush()
    logger.info("Employee profile %s created for user %s in company %s", profile.id, user_id, company_id)
    return profile


def update_employee(profile: EmployeeProfile, data: dict) -> EmployeeProfile:
    department_id = data.get("department_id", profile.department_id)
    unit_id = data.get("unit_id", profile.unit_id)
    if "department_id" in data or "unit_id" in data:
        _check_department_unit(profile.company_id, department_id, unit_id)
    _apply(profile, data)
    db.session.flush()
    return profile


def delete_employee(profile: EmployeeProfile) -> None:
    db.session.delete(profile)
    db.session.flush()
    logger.info("Employee profile %s deleted", profile.id)


# ═════════════════════════════════════════════════════════════════════════════
# Position changes
# ═════════════════════════════════════════════════════════════════════════════

def list_position_changes(profile: EmployeeProfile) -> list[EmployeePositionChange]:
    return (
        profile.position_changes
        .order_by(EmployeePositionChange.effective_date.desc(), EmployeePositionChange.id.desc())
        .all()
    )


def record_position_change(profile: EmployeeProfile, data: dict, user_id: int) -> EmployeePositionChange:
    """Snapshot the current position, then move the profile to the new one."""
    effective_date = parse_date(data.get("effective_date"))
    if not isinstance(effective_date, date):
        raise ValidationError("effective_date is required")

    new_department_id = data.get("new_department_id", profile.department_id)
    new_unit_id = data.get("new_unit_id", profile.unit_id)
    _check_department_unit(profile.company_id, new_department_id, new_unit_id)

    change = EmployeePositionChange(
        profile_id=profile.id,
        previous_position=profile.position,
        previous_department_id=profile.department_id,
        previous_unit_id=profile.unit_id,
        new_position=data.get("new_position", profile.position),
        new_department_id=new_department_id,
        new_unit_id=new_unit_id,
        reason=data.get("reason"),
        effective_date=effective_date,
        created_by=user_id,
    )
    db.session.add(change)

    profile.position = change.new_position
    profile.department_id = new_department_id
    profile.unit_id = new_unit_id
    db.session.flush()
    logger.info(
        "Employee %s position change: %s -> %s", profile.id,
        change.previous_position, change.new_position,
    )
    return change


# ═════════════════════════════════════════════════════════════════════════════
# Files
# ═════════════════════════════════════════════════════════════════════════════

def list_files(profile: EmployeeProfile) -> list[EmployeeFile]:
    return profile.files.order_by(EmployeeFile.created_at.desc(), EmployeeFile.id.desc()).all()


def add_file(profile: EmployeeProfile, data: dict, user_id: int) -> EmployeeFile:
    file = EmployeeFile(
        profile_id=profile.id,
        name=data["name"],
        category=data.get("category") or "other",
        blob_url=data.get("blob_url"),
        content_type=data.get("content_type"),
        size=data.get("size"),
        uploaded_by=user_id,
    )
    db.session.add(file)
    db.session.flush()
    return file


def delete_file(profile: EmployeeProfile, file_id) -> None:
    file = profile.files.filter_by(id=file_id).first()
    if file is None:
        raise NotFoundError("Employee file", file_id)
    db.session.delete(file)
    db.session.flush()
