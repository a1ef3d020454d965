"""
Request (talep) Service — lifecycle, items, notes, files, actions.

Every mutating operation:
  1. validates its input and the status workflow
  2. writes its change
  3. appends one TalepActivity (performed_by = acting user)
  4. stamps talep.updated_by / updated_at
  5. flushes; the route commits once, so an error anywhere rolls back
     the whole step including its activity row

Status workflow: see lunamanager.models.talep.TRANSITIONS.
"""

import logging
import random
import time
from datetime import datetime, timezone

from sqlalchemy import func, or_

from lunamanager.core.exceptions import NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.business_entity import BusinessEntity, BusinessEntityContact
from lunamanager.models.talep import (
    ACTION_CATEGORIES,
    ACTION_OUTCOMES,
    COMMUNICATION_TYPES,
    ITEM_STATUSES,
    TALEP_CATEGORIES,
    TALEP_PRIORITIES,
    TALEP_STATUSES,
    TALEP_TYPES,
    Talep,
    TalepAction,
    TalepActivity,
    TalepFile,
    TalepItem,
    TalepNote,
    can_transition,
    is_final,
    next_valid_statuses,
)
from lunamanager.utils.helpers import as_utc

logger = logging.getLogger(__name__)

CODE_PREFIX = "TLP-"
CODE_ATTEMPTS = 10

ITEM_FIELDS = (
    "product_code", "product_name", "description", "manufacturer", "model", "part_number",
    "specification", "specifications", "category", "requested_quantity", "unit_of_measure",
    "target_price", "currency", "export_controlled", "itar", "end_use_statement",
    "certification_required", "status", "notes",
)
# Editable through update_request besides status / priority / assigned_to
TALEP_FIELDS = (
    "title", "description", "type", "category", "entity_contact_id", "contact_name",
    "contact_phone", "contact_email", "tags", "deadline", "estimated_hours", "actual_hours",
    "estimated_cost", "actual_cost", "resolution", "billing_status",
)
# NOT NULL columns; PUT may change them but never clear them
REQUIRED_TALEP_FIELDS = ("title", "description", "type")
ACTION_FIELDS = (
    "action_type", "action_category", "title", "description", "communication_type",
    "contact_person", "contact_email", "contact_phone", "outcome", "follow_up_required",
    "follow_up_date", "follow_up_notes", "related_product_ids", "attachment_ids", "duration",
    "action_date",
)

SORT_COLUMNS = {
    "createdAt": Talep.created_at,
    "updatedAt": Talep.updated_at,
    "title": Talep.title,
    "status": Talep.status,
    "priority": Talep.priority,
    "deadline": Talep.deadline,
}


# ═════════════════════════════════════════════════════════════════════════════
# Internals
# ═════════════════════════════════════════════════════════════════════════════

def generate_code() -> str:
    """TLP-NNNNN; random draw with 10 retries, then a millisecond-clock fallback."""
    for _ in range(CODE_ATTEMPTS):
        code = f"{CODE_PREFIX}{random.randint(10000, 99999)}"
        if not db.session.query(Talep.id).filter_by(code=code).first():
            return code
    fallback = f"{CODE_PREFIX}{str(int(time.time() * 1000))[-5:]}"
    logger.warning("Talep code space crowded; falling back to %s", fallback)
    return fallback


def _log(talep, activity_type, description, user_id, old_value=None, new_value=None, metadata=None):
    activity = TalepActivity(
        talep_id=talep.id,
        activity_type=activity_type,
        description=description,
        old_value=None if old_value is None else str(old_value),
        new_value=None if new_value is None else str(new_value),
        metadata_=metadata,
        performed_by=user_id,
    )
    db.session.add(activity)
    return activity


def _touch(talep, user_id):
    talep.updated_by = user_id
    talep.updated_at = datetime.now(timezone.utc)


def _check_choice(value, allowed, field):
    if value is not None and value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}", details={"allowed": sorted(allowed)})


def _check_contact(entity_id, contact_id) -> None:
    if contact_id is None:
        return
    if not BusinessEntityContact.query.filter_by(id=contact_id, entity_id=entity_id).first():
        raise ValidationError(
            "Contact does not belong to this business entity", details={"entity_contact_id": contact_id}
        )


def _validate_item(data: dict, partial: bool = False) -> None:
    if not partial or "product_name" in data:
        if not data.get("product_name"):
            raise ValidationError("product_name is required")
    quantity = data.get("requested_quantity")
    if quantity is not None and quantity < 1:
        raise ValidationError("requested_quantity must be >= 1")
    _check_choice(data.get("status"), ITEM_STATUSES, "item status")


def _new_item(talep, data, user_id) -> TalepItem:
    _validate_item(data)
    item = TalepItem(
        talep_id=talep.id,
        created_by=user_id,
        revision=1,
        **{k: data[k] for k in ITEM_FIELDS if data.get(k) is not None},
    )
    db.session.add(item)
    return item


def _transition(talep, new_status):
    if new_status not in TALEP_STATUSES:
        raise ValidationError(f"Unknown status: {new_status}", details={"allowed": TALEP_STATUSES})
    if not can_transition(talep.status, new_status):
        raise ValidationError(
            f"Invalid status transition: {talep.status} -> {new_status}",
            details={"current": talep.status, "allowed": next_valid_statuses(talep.status)},
        )
    old = talep.status
    talep.status = new_status
    if new_status == "closed":
        talep.resolution_date = datetime.now(timezone.utc)
    logger.info("Talep %s status %s -> %s", talep.id, old, new_status)
    return old


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

def get_request(workspace_id: int, company_id: int, talep_id) -> Talep:
    talep = Talep.query_active().filter_by(
        id=talep_id, workspace_id=workspace_id, company_id=company_id
    ).first()
    if talep is None:
        raise NotFoundError("Talep", talep_id, workspace_id=workspace_id)
    return talep


def get_requests(workspace_id: int, company_id: int | None, filters: dict) -> dict:
    """
    Filtered talep list. ``company_id=None`` spans every company in the workspace.

    Filters: status (``all`` = none), customer / entity_id, priority, type,
    assigned_to, search (title, description, code).
    Sorting: sortBy in SORT_COLUMNS (default createdAt), sortOrder asc|desc.
    Paging: limit (default 20) + offset.
    """
    item_counts = (
        db.session.query(TalepItem.talep_id, func.count(TalepItem.id).label("item_count"))
        .group_by(TalepItem.talep_id)
        .subquery()
    )
    q = (
        db.session.query(Talep, BusinessEntity.name, func.coalesce(item_counts.c.item_count, 0))
        .outerjoin(BusinessEntity, BusinessEntity.id == Talep.entity_id)
        .outerjoin(item_counts, item_counts.c.talep_id == Talep.id)
        .filter(Talep.workspace_id == workspace_id, Talep.deleted_at.is_(None))
    )
    if company_id is not None:
        q = q.filter(Talep.company_id == company_id)

    status = filters.get("status")
    if status and status != "all":
        q = q.filter(Talep.status == status)
    entity_id = filters.get("customer") or filters.get("entity_id")
    if entity_id:
        q = q.filter(Talep.entity_id == int(entity_id))
    for key, column in (("priority", Talep.priority), ("type", Talep.type)):
        value = filters.get(key)
        if value and value != "all":
            q = q.filter(column == value)
    if filters.get("assigned_to"):
        q = q.filter(Talep.assigned_to == int(filters["assigned_to"]))

    search = (filters.get("search") or "").strip()
    if search:
        term = f"%{search.lower()}%"
        q = q.filter(or_(
            func.lower(Talep.title).like(term),
            func.lower(Talep.description).like(term),
            func.lower(Talep.code).like(term),
        ))

    total = q.count()
    column = SORT_COLUMNS.get(filters.get("sortBy") or "createdAt", Talep.created_at)
    order = column.asc() if filters.get("sortOrder") == "asc" else column.desc()
    limit = int(filters.get("limit") or 20)
    offset = int(filters.get("offset") or 0)
    rows = q.order_by(order, Talep.id.desc()).offset(offset).limit(limit).all()

    items = []
    for talep, entity_name, item_count in rows:
        d = talep.to_dict()
        d["entity_name"] = entity_name
        d["item_count"] = int(item_count or 0)
        items.append(d)
    return {"items": items, "total": total, "limit": limit, "offset": offset}


def get_request_with_details(talep: Talep) -> dict:
    """Talep + customer, items (oldest first), files/notes (newest first),
    the last 50 activities and the logged actions."""
    d = talep.to_dict()
    d["customer"] = talep.entity.to_dict() if talep.entity else None
    d["items"] = [
        i.to_dict() for i in talep.items.order_by(TalepItem.created_at.asc(), TalepItem.id.asc()).all()
    ]
    d["files"] = [
        f.to_dict() for f in talep.files.order_by(TalepFile.created_at.desc(), TalepFile.id.desc()).all()
    ]
    d["notes"] = [
        n.to_dict() for n in talep.notes.order_by(TalepNote.created_at.desc(), TalepNote.id.desc()).all()
    ]
    d["activities"] = [
        a.to_dict() for a in talep.activities.order_by(
            TalepActivity.created_at.desc(), TalepActivity.id.desc()
        ).limit(50).all()
    ]
    d["actions"] = [
        a.to_dict() for a in talep.actions.order_by(
            TalepAction.action_date.desc(), TalepAction.id.desc()
        ).all()
    ]
    return d


def list_activities(talep: Talep, limit: int = 100) -> list[TalepActivity]:
    return (
        talep.activities
        .order_by(TalepActivity.created_at.desc(), TalepActivity.id.desc())
        .limit(limit)
        .all()
    )


def get_stats(workspace_id: int, company_id: int) -> dict:
    """Counts by status and priority, plus open and overdue totals."""
    base = Talep.query_active().filter_by(workspace_id=workspace_id, company_id=company_id)

    by_status = dict(
        base.with_entities(Talep.status, func.count(Talep.id)).group_by(Talep.status).all()
    )
    by_priority = dict(
        base.with_entities(Talep.priority, func.count(Talep.id)).group_by(Talep.priority).all()
    )

    now = datetime.now(timezone.utc)
    open_rows = base.filter(Talep.status.notin_(("closed", "cancelled"))).with_entities(Talep.deadline).all()
    overdue = sum(1 for (deadline,) in open_rows if deadline and as_utc(deadline) < now)

    return {
        "total": sum(by_status.values()),
        "by_status": {s: by_status.get(s, 0) for s in TALEP_STATUSES},
        "by_priority": {p: by_priority.get(p, 0) for p in sorted(TALEP_PRIORITIES)},
        "open": len(open_rows),
        "overdue": overdue,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Workflow operations
# ═════════════════════════════════════════════════════════════════════════════

def create_request(workspace_id: int, company_id: int, user_id: int, data: dict) -> Talep:
    """
    Create a talep with 0..n items.

    The entity must belong to the same workspace and company.

    Returns: Talep instance (already flushed)
    """
    entity = BusinessEntity.query_active().filter_by(
        id=data.get("entity_id"), workspace_id=workspace_id, company_id=company_id
    ).first()
    if entity is None:
        raise NotFoundError(
            "Business entity", data.get("entity_id"), workspace_id=workspace_id,
            message="Business entity not found or access denied",
        )

    _check_choice(data.get("type"), TALEP_TYPES, "type")
    _check_choice(data.get("category"), TALEP_CATEGORIES, "category")
    _check_contact(entity.id, data.get("entity_contact_id"))
    _check_choice(data.get("priority"), TALEP_PRIORITIES, "priority")
    items_data = data.get("items") or []
    for item_data in items_data:
        _validate_item(item_data)

    talep = Talep(
        code=generate_code(),
        workspace_id=workspace_id,
        company_id=company_id,
        entity_id=entity.id,
        status="new",
        created_by=user_id,
        updated_by=user_id,
        **{k: data[k] for k in TALEP_FIELDS if data.get(k) is not None},
    )
    talep.priority = data.get("priority") or "medium"
    if data.get("assigned_to"):
        talep.assigned_to = data["assigned_to"]
        talep.assigned_by = user_id
    if "metadata" in data:
        talep.metadata_ = data["metadata"]
    db.session.add(talep)
    db.session.flush()

    for item_data in items_data:
        _new_item(talep, item_data, user_id)

    _log(
        talep, "request_created",
        f'Request "{talep.title}" created with {len(items_data)} item(s)',
        user_id,
    )
    db.session.flush()
    logger.info("Talep %s (%s) created in company %s", talep.id, talep.code, company_id)
    return talep


def update_request_status(talep: Talep, new_status: str, user_id: int, notes: str | None = None) -> Talep:
    old = _transition(talep, new_status)
    description = f'Status changed from "{old}" to "{new_status}"'
    if notes:
        description += f": {notes}"
    _log(talep, "status_change", description, user_id, old_value=old, new_value=new_status)
    _touch(talep, user_id)
    db.session.flush()
    return talep


def update_request(talep: Talep, user_id: int, data: dict) -> Talep:
    """
    PUT semantics for a talep.

    status / priority / assigned_to changes each get a ``field_change``
    activity (status goes through the workflow check). One ``updated``
    activity closes the step when anything changed.
    """
    for field in REQUIRED_TALEP_FIELDS:
        if field in data and not data.get(field):
            raise ValidationError(f"{field} is required")
    _check_choice(data.get("type"), TALEP_TYPES, "type")
    _check_choice(data.get("category"), TALEP_CATEGORIES, "category")
    if "entity_contact_id" in data:
        _check_contact(talep.entity_id, data["entity_contact_id"])
    _check_choice(data.get("priority"), TALEP_PRIORITIES, "priority")

    changed = []

    new_status = data.get("status")
    if new_status and new_status != talep.status:
        old = _transition(talep, new_status)
        _log(talep, "field_change", "Status changed", user_id, old_value=old, new_value=new_status,
             metadata={"field": "status"})
        changed.append("status")

    new_priority = data.get("priority")
    if new_priority and new_priority != talep.priority:
        _log(talep, "field_change", "Priority changed", user_id, old_value=talep.priority,
             new_value=new_priority, metadata={"field": "priority"})
        talep.priority = new_priority
        changed.append("priority")

    if "assigned_to" in data and data["assigned_to"] != talep.assigned_to:
        _log(talep, "field_change", "Assignee changed", user_id, old_value=talep.assigned_to,
             new_value=data["assigned_to"], metadata={"field": "assigned_to"})
        talep.assigned_to = data["assigned_to"]
        talep.assigned_by = user_id if data["assigned_to"] else None
        changed.append("assigned_to")

    for field in TALEP_FIELDS:
        if field in data and getattr(talep, field) != data[field]:
            setattr(talep, field, data[field])
            changed.append(field)
    if "metadata" in data and data["metadata"] != talep.metadata_:
        talep.metadata_ = data["metadata"]
        changed.append("metadata")

    if changed:
        _log(talep, "updated", f"Request updated: {', '.join(changed)}", user_id,
             metadata={"fields": changed})
        _touch(talep, user_id)
    db.session.flush()
    return talep


def delete_request(talep: Talep, user_id: int) -> None:
    talep.soft_delete()
    _log(talep, "deleted", f'Request "{talep.title}" deleted', user_id)
    _touch(talep, user_id)
    db.session.flush()
    logger.info("Talep %s soft-deleted by user %s", talep.id, user_id)


# ── Items ───────────────────────────────────────────────────────────────────

def get_item(talep: Talep, item_id) -> TalepItem:
    item = talep.items.filter_by(id=item_id).first()
    if item is None:
        raise NotFoundError("Talep item", item_id)
    return item


def list_items(talep: Talep) -> list[TalepItem]:
    return talep.items.order_by(TalepItem.created_at.asc(), TalepItem.id.asc()).all()


def add_request_item(talep: Talep, user_id: int, data: dict) -> TalepItem:
    item = _new_item(talep, data, user_id)
    _log(talep, "item_added", f'Item "{item.product_name}" added', user_id)
    _touch(talep, user_id)
    db.session.flush()
    return item


def revise_request_item(item: TalepItem, user_id: int, data: dict) -> TalepItem:
    """Apply changes and bump the revision (n -> n+1)."""
    _validate_item(data, partial=True)
    old_revision = item.revision
    for field in ITEM_FIELDS:
        if field in data:
            setattr(item, field, data[field])
    item.revision = old_revision + 1
    talep = item.talep
    _log(
        talep, "item_revised", f'Item "{item.product_name}" revised',
        user_id, old_value=f"Revision {old_revision}", new_value=f"Revision {item.revision}",
    )
    _touch(talep, user_id)
    db.session.flush()
    return item


def delete_request_item(item: TalepItem, user_id: int) -> None:
    talep = item.talep
    _log(talep, "item_deleted", f'Item "{item.product_name}" deleted', user_id)
    db.session.delete(item)
    _touch(talep, user_id)
    db.session.flush()


# ── Files / notes / actions ─────────────────────────────────────────────────

def attach_file_to_request(talep: Talep, user_id: int, data: dict) -> TalepFile:
    file = TalepFile(
        talep_id=talep.id,
        name=data["name"],
        category=data.get("category") or "other",
        blob_url=data.get("blob_url"),
        blob_path=data.get("blob_path"),
        content_type=data.get("content_type"),
        size=data.get("size"),
        description=data.get("description"),
        is_visible_to_entity=bool(data.get("is_visible_to_entity", False)),
        uploaded_by=user_id,
    )
    db.session.add(file)
    _log(talep, "file_uploaded", f"File uploaded: {file.name}", user_id)
    _touch(talep, user_id)
    db.session.flush()
    return file


def add_note_to_request(talep: Talep, user_id: int, data: dict) -> TalepNote:
    note = TalepNote(
        talep_id=talep.id,
        title=data.get("title"),
        content=data["content"],
        note_type=data.get("note_type") or "internal",
        is_internal=bool(data.get("is_internal", True)),
        is_visible_to_entity=bool(data.get("is_visible_to_entity", False)),
        priority=data.get("priority") or "medium",
        created_by=user_id,
    )
    db.session.add(note)
    _log(talep, "note_added", f"Note added: {note.title or 'Untitled note'}", user_id)
    _touch(talep, user_id)
    db.session.flush()
    return note


def add_action(talep: Talep, user_id: int, data: dict) -> TalepAction:
    if not data.get("action_type"):
        raise ValidationError("action_type is required")
    if not data.get("description"):
        raise ValidationError("description is required")
    _check_choice(data.get("action_category"), ACTION_CATEGORIES, "action_category")
    _check_choice(data.get("communication_type"), COMMUNICATION_TYPES, "communication_type")
    _check_choice(data.get("outcome"), ACTION_OUTCOMES, "outcome")
    duration = data.get("duration")
    if duration is not None and duration < 0:
        raise ValidationError("duration must be >= 0")

    action = TalepAction(
        talep_id=talep.id,
        performed_by=user_id,
        **{k: data[k] for k in ACTION_FIELDS if data.get(k) is not None},
    )
    if not action.action_category:
        action.action_category = "other"
    db.session.add(action)
    _log(
        talep, "action_logged",
        f"Action logged: {action.title or action.action_type}", user_id,
        metadata={"action_type": action.action_type, "category": action.action_category},
    )
    _touch(talep, user_id)
    db.session.flush()
    return action


def list_actions(talep: Talep) -> list[TalepAction]:
    return talep.actions.order_by(TalepAction.action_date.desc(), TalepAction.id.desc()).all()


def list_notes(talep: Talep) -> list[TalepNote]:
    return talep.notes.order_by(TalepNote.created_at.desc(), TalepNote.id.desc()).all()


def list_files(talep: Talep) -> list[TalepFile]:
    return talep.files.order_by(TalepFile.created_at.desc(), TalepFile.id.desc()).all()


__all__ = [
    "create_request", "get_request", "get_requests", "get_request_with_details",
    "update_request_status", "update_request", "delete_request",
    "add_request_item", "revise_request_item", "delete_request_item",
    "attach_file_to_request", "add_note_to_request", "add_action",
    "get_stats", "is_final",
]
