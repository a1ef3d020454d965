"""
Business Entity Service — customers, suppliers and their sub-resources.

Scope: every lookup is filtered by (workspace_id, company_id). An entity
from another scope is reported as not found.

List views:
    business-entities  all types (optionally ?type=)
    customers          entity_type in (customer, both)
    suppliers          entity_type in (supplier, both)

Transaction policy: flush only, the caller commits.
"""

import logging
import math
from decimal import Decimal

from sqlalchemy import func, or_

from lunamanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.business_entity import (
    ADDRESS_TYPES,
    ENTITY_CATEGORIES,
    ENTITY_PRIORITIES,
    ENTITY_STATUSES,
    ENTITY_TYPES,
    NOTE_TYPES,
    BusinessEntity,
    BusinessEntityActivity,
    BusinessEntityAddress,
    BusinessEntityContact,
    BusinessEntityFile,
    BusinessEntityNote,
)

logger = logging.getLogger(__name__)

ENTITY_FIELDS = (
    "name", "full_name", "entity_category", "business_type", "status", "industry", "priority",
    "phone", "email", "website", "fax", "address", "district", "city", "postal_code", "country",
    "tax_office", "tax_number", "mersis_number", "trade_registry_number",
    "default_currency", "credit_limit", "payment_terms", "discount_rate",
    "entity_code", "supplier_code", "customer_code",
    "lead_time_days", "minimum_order_quantity", "quality_rating", "delivery_rating",
    "defense_contractor", "export_license", "security_clearance", "certifications",
    "primary_contact_name", "primary_contact_title", "primary_contact_phone", "primary_contact_email",
    "parent_entity_id", "entity_group", "tags", "notes", "internal_notes",
)
ADDRESS_FIELDS = (
    "address_type", "title", "address", "district", "city", "postal_code", "country",
    "is_default", "is_active",
)
CONTACT_FIELDS = (
    "first_name", "last_name", "title", "department", "phone", "mobile", "email", "role",
    "is_primary", "is_active", "notes",
)
NOTE_FIELDS = ("title", "content", "note_type", "is_internal", "priority")
FILE_FIELDS = ("name", "category", "blob_url", "content_type", "size", "description")

SORT_COLUMNS = {
    "name": BusinessEntity.name,
    "createdAt": BusinessEntity.created_at,
    "updatedAt": BusinessEntity.updated_at,
    "status": BusinessEntity.status,
    "priority": BusinessEntity.priority,
}

# Which entity_type values each list view shows
VIEW_TYPES = {
    "customers": ("customer", "both"),
    "suppliers": ("supplier", "both"),
}


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _record_activity(entity, activity_type, title, user_id=None, description=None):
    activity = BusinessEntityActivity(
        entity_id=entity.id,
        activity_type=activity_type,
        title=title,
        description=description,
        performed_by=user_id,
    )
    db.session.add(activity)
    return activity


def _validate_entity(workspace_id, company_id, data, entity=None):
    checks = (
        ("entity_type", ENTITY_TYPES),
        ("entity_category", ENTITY_CATEGORIES),
        ("status", ENTITY_STATUSES),
        ("priority", ENTITY_PRIORITIES),
    )
    for field, allowed in checks:
        value = data.get(field)
        if value is not None and value not in allowed:
            raise ValidationError(f"Invalid {field}: {value}", details={"allowed": sorted(allowed)})

    rate = data.get("discount_rate")
    if rate is not None and not (Decimal("0") <= Decimal(str(rate)) <= Decimal("100")):
        raise ValidationError("discount_rate must be between 0 and 100")

    for field in ("tax_number", "entity_code"):
        value = data.get(field)
        if not value:
            continue
        q = BusinessEntity.query.filter(
            BusinessEntity.company_id == company_id, getattr(BusinessEntity, field) == value
        )
        if entity is not None:
            q = q.filter(BusinessEntity.id != entity.id)
        if q.first():
            raise ConflictError("Business entity", field, value)

    parent_id = data.get("parent_entity_id")
    if parent_id:
        if entity is not None and int(parent_id) == entity.id:
            raise ValidationError("An entity cannot be its own parent")
        get_entity(workspace_id, company_id, parent_id)


# ═════════════════════════════════════════════════════════════════════════════
# Entities
# ═════════════════════════════════════════════════════════════════════════════

def get_entity(workspace_id: int, company_id: int | None, entity_id, view: str | None = None) -> BusinessEntity:
    """Scoped lookup; ``view`` limits to the customer or supplier list.

    ``company_id=None`` looks across every company of the workspace.
    """
    q = BusinessEntity.query_active().filter_by(id=entity_id, workspace_id=workspace_id)
    if company_id is not None:
        q = q.filter(BusinessEntity.company_id == company_id)
    if view in VIEW_TYPES:
        q = q.filter(BusinessEntity.entity_type.in_(VIEW_TYPES[view]))
    entity = q.first()
    if entity is None:
        raise NotFoundError("Business entity", entity_id, workspace_id=workspace_id)
    return entity


def build_list_query(workspace_id: int, company_id: int | None, filters: dict, view: str | None = None):
    """Filtered, sorted query shared by the list and export endpoints."""
    q = BusinessEntity.query_active().filter_by(workspace_id=workspace_id)
    if company_id is not None:
        q = q.filter(BusinessEntity.company_id == company_id)

    if view in VIEW_TYPES:
        q = q.filter(BusinessEntity.entity_type.in_(VIEW_TYPES[view]))
    entity_type = filters.get("type")
    if entity_type and entity_type != "all":
        q = q.filter(BusinessEntity.entity_type == entity_type)

    search = (filters.get("search") or "").strip()
    if search:
        term = f"%{search.lower()}%"
        q = q.filter(or_(
            func.lower(BusinessEntity.name).like(term),
            func.lower(BusinessEntity.email).like(term),
            func.lower(BusinessEntity.phone).like(term),
            func.lower(BusinessEntity.tax_number).like(term),
            func.lower(BusinessEntity.primary_contact_name).like(term),
        ))

    status = filters.get("status")
    if status and status != "all":
        q = q.filter(BusinessEntity.status == status)
    for field in ("priority", "industry"):
        value = filters.get(field)
        if value and value != "all":
            q = q.filter(getattr(BusinessEntity, field) == value)

    column = SORT_COLUMNS.get(filters.get("sortBy") or "createdAt", BusinessEntity.created_at)
    order = column.asc() if filters.get("sortOrder") == "asc" else column.desc()
    return q.order_by(order, BusinessEntity.id.desc())


def list_entities(workspace_id: int, company_id: int | None, filters: dict, page: int, limit: int, view=None) -> dict:
    q = build_list_query(workspace_id, company_id, filters, view)
    total = q.count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [e.to_dict() for e in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def create_entity(workspace_id: int, company_id: int, data: dict, user_id: int | None, view=None) -> BusinessEntity:
    """
    Create an entity and log a ``created`` activity.

    The customer/supplier views force their own type unless ``both`` is asked for.

    Returns: BusinessEntity instance (already flushed)
    """
    data = dict(data)
    if view == "customers" and data.get("entity_type") != "both":
        data["entity_type"] = "customer"
    elif view == "suppliers" and data.get("entity_type") != "both":
        data["entity_type"] = "supplier"
    _validate_entity(workspace_id, company_id, data)

    entity = BusinessEntity(
        workspace_id=workspace_id,
        company_id=company_id,
        entity_type=data.get("entity_type") or "customer",
        created_by=user_id,
        updated_by=user_id,
        **{k: data[k] for k in ENTITY_FIELDS if data.get(k) is not None},
    )
    if "metadata" in data:
        entity.metadata_ = data["metadata"]
    db.session.add(entity)
    db.session.flush()
    _record_activity(entity, "created", f'"{entity.name}" created', user_id)
    db.session.flush()
    logger.info("Business entity %s (%s) created in company %s", entity.id, entity.entity_type, company_id)
    return entity


def update_entity(entity: BusinessEntity, data: dict, user_id: int | None) -> BusinessEntity:
    if "name" in data and not data.get("name"):
        raise ValidationError("Name is required")
    _validate_entity(entity.workspace_id, entity.company_id, data, entity)

    changed = []
    for field in ("entity_type",) + ENTITY_FIELDS:
        if field in data and getattr(entity, field) != data[field]:
            setattr(entity, field, data[field])
            changed.append(field)
    if "metadata" in data:
        entity.metadata_ = data["metadata"]
        changed.append("metadata")
    entity.updated_by = user_id
    _record_activity(
        entity, "updated", f'"{entity.name}" updated', user_id,
        description=", ".join(changed) if changed else None,
    )
    db.session.flush()
    return entity


def delete_entity(entity: BusinessEntity, user_id: int | None) -> None:
    entity.soft_delete()
    entity.updated_by = user_id
    _record_activity(entity, "deleted", f'"{entity.name}" deleted', user_id)
    db.session.flush()
    logger.info("Business entity %s soft-deleted", entity.id)


def get_entity_detail(entity: BusinessEntity) -> dict:
    """Entity with addresses, contacts, latest five notes and sub-resource counts."""
    d = entity.to_dict()
    d["addresses"] = [
        a.to_dict() for a in entity.addresses.order_by(
            BusinessEntityAddress.is_default.desc(), BusinessEntityAddress.id
        ).all()
    ]
    d["contacts"] = [
        c.to_dict() for c in entity.contacts.order_by(
            BusinessEntityContact.is_primary.desc(), BusinessEntityContact.id
        ).all()
    ]
    d["recent_notes"] = [
        n.to_dict() for n in entity.entity_notes.order_by(
            BusinessEntityNote.created_at.desc(), BusinessEntityNote.id.desc()
        ).limit(5).all()
    ]
    d["counts"] = {
        "addresses": entity.addresses.count(),
        "contacts": entity.contacts.count(),
        "notes": entity.entity_notes.count(),
        "files": entity.files.count(),
        "activities": entity.activities.count(),
    }
    return d


# ═════════════════════════════════════════════════════════════════════════════
# Sub-resources
# ═════════════════════════════════════════════════════════════════════════════

def _get_child(model, entity, child_id, label):
    child = model.query.filter_by(id=child_id, entity_id=entity.id).first()
    if child is None:
        raise NotFoundError(label, child_id)
    return child


def _apply(obj, fields, data):
    for field in fields:
        if field in data:
            setattr(obj, field, data[field])


# ── Addresses ───────────────────────────────────────────────────────────────

def _single_default_address(entity, keep_id):
    BusinessEntityAddress.query.filter(
        BusinessEntityAddress.entity_id == entity.id,
        BusinessEntityAddress.id != keep_id,
        BusinessEntityAddress.is_default.is_(True),
    ).update({"is_default": False}, synchronize_session="fetch")


def list_addresses(entity):
    return entity.addresses.order_by(BusinessEntityAddress.is_default.desc(), BusinessEntityAddress.id).all()


def create_address(entity, data, user_id=None):
    address_type = data.get("address_type")
    if address_type is not None and address_type not in ADDRESS_TYPES:
        raise ValidationError(f"Invalid address_type: {address_type}")
    address = BusinessEntityAddress(entity_id=entity.id)
    _apply(address, ADDRESS_FIELDS, {k: v for k, v in data.items() if v is not None})
    db.session.add(address)
    db.session.flush()
    if address.is_default:
        _single_default_address(entity, address.id)
    _record_activity(entity, "address_added", f"Address added: {address.title or address.address_type}", user_id)
    db.session.flush()
    return address


def update_address(entity, address_id, data):
    address = _get_child(BusinessEntityAddress, entity, address_id, "Address")
    if "address" in data and not data.get("address"):
        raise ValidationError("Address is required")
    _apply(address, ADDRESS_FIELDS, data)
    if address.is_default:
        _single_default_address(entity, address.id)
    db.session.flush()
    return address


def delete_address(entity, address_id):
    db.session.delete(_get_child(BusinessEntityAddress, entity, address_id, "Address"))
    db.session.flush()


# ── Contacts ────────────────────────────────────────────────────────────────

def _single_primary_contact(entity, keep_id):
    BusinessEntityContact.query.filter(
        BusinessEntityContact.entity_id == entity.id,
        BusinessEntityContact.id != keep_id,
        BusinessEntityContact.is_primary.is_(True),
    ).update({"is_primary": False}, synchronize_session="fetch")


def list_contacts(entity):
    return entity.contacts.order_by(BusinessEntityContact.is_primary.desc(), BusinessEntityContact.id).all()


def create_contact(entity, data, user_id=None):
    contact = BusinessEntityContact(entity_id=entity.id)
    _apply(contact, CONTACT_FIELDS, {k: v for k, v in data.items() if v is not None})
    db.session.add(contact)
    db.session.flush()
    if contact.is_primary:
        _single_primary_contact(entity, contact.id)
    _record_activity(entity, "contact_added", f"Contact added: {contact.full_name}", user_id)
    db.session.flush()
    return contact


def update_contact(entity, contact_id, data):
    contact = _get_child(BusinessEntityContact, entity, contact_id, "Contact")
    for field in ("first_name", "last_name"):
        if field in data and not data.get(field):
            raise ValidationError(f"{field} is required")
    _apply(contact, CONTACT_FIELDS, data)
    if contact.is_primary:
        _single_primary_contact(entity, contact.id)
    db.session.flush()
    return contact


def delete_contact(entity, contact_id):
    db.session.delete(_get_child(BusinessEntityContact, entity, contact_id, "Contact"))
    db.session.flush()


# ── Notes ───────────────────────────────────────────────────────────────────

def list_notes(entity):
    return entity.entity_notes.order_by(BusinessEntityNote.created_at.desc(), BusinessEntityNote.id.desc()).all()


def create_note(entity, data, user_id=None):
    note_type = data.get("note_type")
    if note_type is not None and note_type not in NOTE_TYPES:
        raise ValidationError(f"Invalid note_type: {note_type}")
    note = BusinessEntityNote(entity_id=entity.id, created_by=user_id)
    _apply(note, NOTE_FIELDS, {k: v for k, v in data.items() if v is not None})
    db.session.add(note)
    _record_activity(entity, "note_added", f"Note added: {note.title or 'Untitled note'}", user_id)
    db.session.flush()
    return note


def update_note(entity, note_id, data):
    note = _get_child(BusinessEntityNote, entity, note_id, "Note")
    if "content" in data and not data.get("content"):
        raise ValidationError("content is required")
    _apply(note, NOTE_FIELDS, data)
    db.session.flush()
    return note


def delete_note(entity, note_id):
    db.session.delete(_get_child(BusinessEntityNote, entity, note_id, "Note"))
    db.session.flush()


# ── Files ───────────────────────────────────────────────────────────────────

def list_files(entity):
    return entity.files.order_by(BusinessEntityFile.created_at.desc(), BusinessEntityFile.id.desc()).all()


def create_file(entity, data, user_id=None):
    file = BusinessEntityFile(entity_id=entity.id, uploaded_by=user_id)
    _apply(file, FILE_FIELDS, {k: v for k, v in data.items() if v is not None})
    db.session.add(file)
    _record_activity(entity, "file_uploaded", f"File uploaded: {file.name}", user_id)
    db.session.flush()
    return file


def update_file(entity, file_id, data):
    file = _get_child(BusinessEntityFile, entity, file_id, "File")
    if "name" in data and not data.get("name"):
        raise ValidationError("name is required")
    _apply(file, FILE_FIELDS, data)
    db.session.flush()
    return file


def delete_file(entity, file_id):
    db.session.delete(_get_child(BusinessEntityFile, entity, file_id, "File"))
    db.session.flush()


# ── Activities (read-only) ──────────────────────────────────────────────────

def list_activities(entity, limit=100):
    return (
        entity.activities
        .order_by(BusinessEntityActivity.created_at.desc(), BusinessEntityActivity.id.desc())
        .limit(limit)
        .all()
    )
