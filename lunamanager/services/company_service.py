"""
Company Service — companies, departments, units, locations and files.

Every lookup is scoped: a department must belong to the company in the
URL, a unit to that department, and so on. Mismatches raise NotFoundError.

Transaction policy: flush only, the caller commits.
"""

import logging
import re

from lunamanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.company import (
    COMPANY_STATUSES,
    Company,
    CompanyFile,
    CompanyFileVersion,
    CompanyLocation,
    Department,
    Unit,
)
from lunamanager.models.settings import CompanySettings
from lunamanager.models.workspace import Workspace, WorkspaceMember
from lunamanager.services import workspace_service
from lunamanager.services.activity_service import record_activity

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

COMPANY_FIELDS = (
    "name", "full_name", "status", "industry", "phone", "email", "website", "address",
    "district", "city", "postal_code", "tax_office", "tax_number", "mersis_number",
    "default_currency", "parent_company_id", "notes",
)
DEPARTMENT_FIELDS = (
    "code", "name", "description", "responsibility_area", "goals", "manager_id",
    "mail_address", "parent_department_id",
)
UNIT_FIELDS = ("name", "description", "staff_count", "lead_id")
LOCATION_FIELDS = (
    "name", "code", "location_type", "phone", "email", "address", "district", "city",
    "postal_code", "country", "is_headquarters", "notes",
)


# ═════════════════════════════════════════════════════════════════════════════
# COMPANIES
# ═════════════════════════════════════════════════════════════════════════════

def _validate_company(data: dict, company: Company | None = None) -> None:
    status = data.get("status")
    if status is not None and status not in COMPANY_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"allowed": sorted(COMPANY_STATUSES)})

    currency = data.get("default_currency")
    if currency is not None and not _CURRENCY_RE.match(currency):
        raise ValidationError("default_currency must be 3 upper-case letters")

    for field in ("tax_number", "mersis_number"):
        value = data.get(field)
        if not value:
            continue
        q = Company.query.filter(getattr(Company, field) == value)
        if company is not None:
            q = q.filter(Company.id != company.id)
        if q.first():
            raise ConflictError("Company", field, value)


def create_company(workspace: Workspace, data: dict, user_id: int | None = None) -> Company:
    """
    Create a company, link it to the workspace and give it default settings.

    Returns: Company instance (already flushed)
    """
    _validate_company(data)
    if data.get("parent_company_id"):
        if workspace_service.find_company(workspace.id, data["parent_company_id"]) is None:
            raise NotFoundError("Parent company", data["parent_company_id"], workspace_id=workspace.id)

    company = Company(**{k: data[k] for k in COMPANY_FIELDS if data.get(k) is not None})
    if "metadata" in data:
        company.metadata_ = data["metadata"]
    db.session.add(company)
    db.session.flush()

    workspace_service.link_company(workspace, company, added_by=user_id)
    db.session.add(CompanySettings(company_id=company.id))
    db.session.flush()
    record_activity(
        "company.create", user_id=user_id, workspace_id=workspace.id, company_id=company.id,
        resource_type="company", resource_id=company.id, resource_name=company.name,
    )
    logger.info("Company %s created in workspace %s", company.id, workspace.id)
    return company


def update_company(workspace: Workspace, company: Company, data: dict) -> Company:
    if "name" in data and not data.get("name"):
        raise ValidationError("Company name is required")
    _validate_company(data, company)

    parent_id = data.get("parent_company_id")
    if parent_id:
        if int(parent_id) == company.id:
            raise ValidationError("A company cannot be its own parent")
        if workspace_service.find_company(workspace.id, parent_id) is None:
            raise NotFoundError("Parent company", parent_id, workspace_id=workspace.id)

    for field in COMPANY_FIELDS:
        if field in data:
            setattr(company, field, data[field])
    if "metadata" in data:
        company.metadata_ = data["metadata"]
    db.session.flush()
    return company


def delete_company(company: Company) -> None:
    company.soft_delete()
    db.session.flush()
    logger.info("Company %s soft-deleted", company.id)


def list_company_members(workspace: Workspace, company: Company) -> list[dict]:
    """Workspace members that may work in this company (unrestricted or pinned here)."""
    members = workspace.members.order_by(WorkspaceMember.joined_at).all()
    return [
        m.to_dict(include_user=True)
        for m in members
        if m.restricted_company_id in (None, company.id)
    ]


# ═════════════════════════════════════════════════════════════════════════════
# DEPARTMENTS / UNITS
# ═════════════════════════════════════════════════════════════════════════════

def get_department(company: Company, department_id: int) -> Department:
    department = Department.query.filter_by(id=department_id, company_id=company.id).first()
    if department is None:
        raise NotFoundError("Department", department_id)
    return department


def _check_department_unique(company: Company, data: dict, exclude_id: int | None = None) -> None:
    for field in ("name", "code"):
        value = data.get(field)
        if not value:
            continue
        q = Department.query.filter(
            Department.company_id == company.id, getattr(Department, field) == value
        )
        if exclude_id is not None:
            q = q.filter(Department.id != exclude_id)
        if q.first():
            raise ConflictError("Department", field, value)


def create_department(company: Company, data: dict) -> Department:
    _check_department_unique(company, data)
    if data.get("parent_department_id"):
        get_department(company, data["parent_department_id"])
    department = Department(
        company_id=company.id,
        **{k: data[k] for k in DEPARTMENT_FIELDS if data.get(k) is not None},
    )
    db.session.add(department)
    db.session.flush()
    return department


def update_department(company: Company, department: Department, data: dict) -> Department:
    if "name" in data and not data.get("name"):
        raise ValidationError("Department name is required")
    _check_department_unique(company, data, exclude_id=department.id)
    parent_id = data.get("parent_department_id")
    if parent_id:
        if int(parent_id) == department.id:
            raise ValidationError("A department cannot be its own parent")
        get_department(company, parent_id)
    for field in DEPARTMENT_FIELDS:
        if field in data:
            setattr(department, field, data[field])
    db.session.flush()
    return department


def delete_department(department: Department) -> None:
    db.session.delete(department)
    db.session.flush()


def get_unit(department: Department, unit_id: int) -> Unit:
    unit = Unit.query.filter_by(id=unit_id, department_id=department.id).first()
    if unit is None:
        raise NotFoundError("Unit", unit_id)
    return unit


def _check_unit(department: Department, data: dict, exclude_id: int | None = None) -> None:
    staff_count = data.get("staff_count")
    if staff_count is not None and staff_count < 0:
        raise ValidationError("staff_count must be >= 0")
    name = data.get("name")
    if name:
        q = Unit.query.filter_by(department_id=department.id, name=name)
        if exclude_id is not None:
            q = q.filter(Unit.id != exclude_id)
        if q.first():
            raise ConflictError("Unit", "name", name)


def create_unit(department: Department, data: dict) -> Unit:
    _check_unit(department, data)
    unit = Unit(
        department_id=department.id,
        **{k: data[k] for k in UNIT_FIELDS if data.get(k) is not None},
    )
    db.session.add(unit)
    db.session.flush()
    return unit


def update_unit(department: Department, unit: Unit, data: dict) -> Unit:
    if "name" in data and not data.get("name"):
        raise ValidationError("Unit name is required")
    _check_unit(department, data, exclude_id=unit.id)
    for field in UNIT_FIELDS:
        if field in data:
            setattr(unit, field, data[field])
    db.session.flush()
    return unit


def delete_unit(unit: Unit) -> None:
    db.session.delete(unit)
    db.session.flush()


# ═════════════════════════════════════════════════════════════════════════════
# LOCATIONS
# ═════════════════════════════════════════════════════════════════════════════

def list_locations(company: Company) -> list[CompanyLocation]:
    """Headquarters first, then by name."""
    return (
        CompanyLocation.query_active()
        .filter_by(company_id=company.id)
        .order_by(CompanyLocation.is_headquarters.desc(), CompanyLocation.name)
        .all()
    )


def get_location(company: Company, location_id: int) -> CompanyLocation:
    location = (
        CompanyLocation.query_active()
        .filter_by(id=location_id, company_id=company.id)
        .first()
    )
    if location is None:
        raise NotFoundError("Location", location_id)
    return location


def _check_location_unique(company: Company, data: dict, exclude_id: int | None = None) -> None:
    for field in ("name", "code"):
        value = data.get(field)
        if not value:
            continue
        q = CompanyLocation.query_active().filter(
            CompanyLocation.company_id == company.id, getattr(CompanyLocation, field) == value
        )
        if exclude_id is not None:
            q = q.filter(CompanyLocation.id != exclude_id)
        if q.first():
            raise ConflictError("Location", field, value)


def _clear_other_headquarters(company: Company, keep_id: int) -> None:
    (
        CompanyLocation.query
        .filter(
            CompanyLocation.company_id == company.id,
            CompanyLocation.id != keep_id,
            CompanyLocation.is_headquarters.is_(True),
        )
        .update({"is_headquarters": False}, synchronize_session="fetch")
    )


def create_location(company: Company, data: dict) -> CompanyLocation:
    _check_location_unique(company, data)
    location = CompanyLocation(
        company_id=company.id,
        **{k: data[k] for k in LOCATION_FIELDS if data.get(k) is not None},
    )
    if "metadata" in data:
        location.metadata_ = data["metadata"]
    db.session.add(location)
    db.session.flush()
    if location.is_headquarters:
        _clear_other_headquarters(company, location.id)
    db.session.flush()
    return location


def update_location(company: Company, location: CompanyLocation, data: dict) -> CompanyLocation:
    if "name" in data and not data.get("name"):
        raise ValidationError("Location name is required")
    _check_location_unique(company, data, exclude_id=location.id)
    for field in LOCATION_FIELDS:
        if field in data:
            setattr(location, field, data[field])
    if "metadata" in data:
        location.metadata_ = data["metadata"]
    if location.is_headquarters:
        _clear_other_headquarters(company, location.id)
    db.session.flush()
    return location


def delete_location(location: CompanyLocation) -> None:
    location.soft_delete()
    location.is_headquarters = False
    db.session.flush()


# ═════════════════════════════════════════════════════════════════════════════
# FILES
# ═════════════════════════════════════════════════════════════════════════════

def list_files(company: Company) -> list[CompanyFile]:
    return (
        CompanyFile.query_active()
        .filter_by(company_id=company.id)
        .order_by(CompanyFile.created_at.desc())
        .all()
    )


def get_file(company: Company, file_id: int) -> CompanyFile:
    file = CompanyFile.query_active().filter_by(id=file_id, company_id=company.id).first()
    if file is None:
        raise NotFoundError("File", file_id)
    return file


def _version_kwargs(data: dict) -> dict:
    return {
        "blob_url": data["blob_url"],
        "blob_path": data.get("blob_path"),
        "content_type": data.get("content_type"),
        "size": data.get("size"),
        "notes": data.get("notes"),
    }


def create_file(company: Company, data: dict, user_id: int | None) -> CompanyFile:
    """Register a file and its first version (current)."""
    file = CompanyFile(
        company_id=company.id,
        name=data["name"],
        category=data.get("category") or "other",
        description=data.get("description"),
        uploaded_by=user_id,
    )
    db.session.add(file)
    db.session.flush()
    db.session.add(CompanyFileVersion(
        file_id=file.id, version_number=1, is_current=True, uploaded_by=user_id,
        **_version_kwargs(data),
    ))
    db.session.flush()
    return file


def add_file_version(file: CompanyFile, data: dict, user_id: int | None) -> CompanyFileVersion:
    """Append version n+1 and make it the current one."""
    last = file.versions.order_by(CompanyFileVersion.version_number.desc()).first()
    next_number = (last.version_number if last else 0) + 1
    CompanyFileVersion.query.filter_by(file_id=file.id, is_current=True).update(
        {"is_current": False}, synchronize_session="fetch"
    )
    version = CompanyFileVersion(
        file_id=file.id, version_number=next_number, is_current=True, uploaded_by=user_id,
        **_version_kwargs(data),
    )
    db.session.add(version)
    db.session.flush()
    logger.info("File %s now at version %s", file.id, next_number)
    return version


def make_version_current(file: CompanyFile, version_id: int) -> CompanyFileVersion:
    version = file.versions.filter_by(id=version_id).first()
    if version is None:
        raise NotFoundError("File version", version_id)
    CompanyFileVersion.query.filter(
        CompanyFileVersion.file_id == file.id,
        CompanyFileVersion.id != version.id, CompanyFileVersion.is_current.is_(True)
    ).update({"is_current": False}, synchronize_session="fetch")
    version.is_current = True
    db.session.flush()
    return version


def delete_file(file: CompanyFile) -> None:
    file.soft_delete()
    db.session.flush()
