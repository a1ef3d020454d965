"""
Talep (request) models.

    Talep
      ├── TalepItem      requested product lines (revisioned)
      ├── TalepNote
      ├── TalepFile      blob metadata only
      ├── TalepActivity  append-only audit trail
      └── TalepAction    logged communication / procurement steps

Status pipeline:

    new → clarification → supplier_inquiry → pricing → offer → negotiation → closed
    (any active status) → cancelled

``closed`` and ``cancelled`` are final.
"""

from datetime import datetime, timezone

from lunamanager.models import db
from lunamanager.models.base import CompanyScopedModel
from lunamanager.models.soft_delete import SoftDeleteMixin

# ═════════════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═════════════════════════════════════════════════════════════════════════════

TALEP_TYPES = {
    "rfq", "rfi", "rfp", "product_inquiry", "price_request", "quotation_request",
    "order_request", "sample_request", "certification_req", "compliance_inquiry",
    "export_license", "end_user_cert", "delivery_status", "return_request", "billing",
    "technical_support", "general_inquiry", "complaint", "feature_request",
    "bug_report", "installation", "training", "maintenance", "other",
}
TALEP_CATEGORIES = {
    "weapon_systems", "ammunition", "avionics", "radar_systems", "communication",
    "electronic_warfare", "naval_systems", "land_systems", "air_systems",
    "cyber_security", "simulation", "c4isr", "hardware", "software", "network",
    "database", "security", "performance", "integration", "reporting",
    "user_access", "other",
}
TALEP_PRIORITIES = {"low", "medium", "high", "urgent"}

TALEP_STATUSES = [
    "new", "clarification", "supplier_inquiry", "pricing", "offer",
    "negotiation", "closed", "cancelled",
]
FINAL_STATUSES = {"closed", "cancelled"}

TRANSITIONS = {
    "new": {"clarification", "supplier_inquiry", "cancelled"},
    "clarification": {"supplier_inquiry", "pricing", "cancelled"},
    "supplier_inquiry": {"clarification", "pricing", "cancelled"},
    "pricing": {"supplier_inquiry", "offer", "cancelled"},
    "offer": {"pricing", "negotiation", "closed", "cancelled"},
    "negotiation": {"offer", "closed", "cancelled"},
    "closed": set(),
    "cancelled": set(),
}

ITEM_STATUSES = {"requested", "quoted", "sourcing", "approved", "rejected", "delivered"}

ACTION_CATEGORIES = {"communication", "documentation", "procurement", "technical", "other"}
COMMUNICATION_TYPES = {"email", "phone", "meeting", "site_visit", "other"}
ACTION_OUTCOMES = {"successful", "pending", "failed", "follow_up_required"}

BILLING_STATUSES = {"not_billable", "pending", "billed", "paid"}


def is_final(status):
    return status in FINAL_STATUSES


def is_active(status):
    return status in TRANSITIONS and status not in FINAL_STATUSES


def next_valid_statuses(status):
    """Sorted list of statuses reachable from ``status`` (empty when final/unknown)."""
    return sorted(TRANSITIONS.get(status, ()))


def can_transition(current, target):
    return target in TRANSITIONS.get(current, ())


# ═════════════════════════════════════════════════════════════════════════════
# TALEP
# ═════════════════════════════════════════════════════════════════════════════

class Talep(SoftDeleteMixin, CompanyScopedModel):
    __tablename__ = "talepler"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(40), nullable=False, default="general_inquiry")
    category = db.Column(db.String(40))
    priority = db.Column(db.String(20), nullable=False, default="medium")
    status = db.Column(db.String(30), nullable=False, default="new", index=True)

    entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    entity_contact_id = db.Column(
        db.Integer, db.ForeignKey("business_entity_contacts.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    contact_name = db.Column(db.String(255))
    contact_phone = db.Column(db.String(30))
    contact_email = db.Column(db.String(255))

    tags = db.Column(db.JSON, default=list)
    metadata_ = db.Column("metadata", db.JSON)
    deadline = db.Column(db.DateTime)

    estimated_hours = db.Column(db.Numeric(10, 2))
    actual_hours = db.Column(db.Numeric(10, 2))
    estimated_cost = db.Column(db.Numeric(15, 2))
    actual_cost = db.Column(db.Numeric(15, 2))

    resolution = db.Column(db.Text)
    resolution_date = db.Column(db.DateTime)
    billing_status = db.Column(db.String(20), default="not_billable")

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_talepler_scope_status", "workspace_id", "company_id", "status"),
    )

    entity = db.relationship("BusinessEntity")
    items = db.relationship(
        "TalepItem", back_populates="talep", lazy="dynamic", cascade="all, delete-orphan"
    )
    notes = db.relationship(
        "TalepNote", back_populates="talep", lazy="dynamic", cascade="all, delete-orphan"
    )
    files = db.relationship(
        "TalepFile", back_populates="talep", lazy="dynamic", cascade="all, delete-orphan"
    )
    activities = db.relationship(
        "TalepActivity", back_populates="talep", lazy="dynamic", cascade="all, delete-orphan"
    )
    actions = db.relationship(
        "TalepAction", back_populates="talep", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "next_statuses": next_valid_statuses(self.status),
            "entity_id": self.entity_id,
            "entity_contact_id": self.entity_contact_id,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "tags": self.tags or [],
            "metadata": self.metadata_,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "estimated_hours": float(self.estimated_hours) if self.estimated_hours is not None else None,
            "actual_hours": float(self.actual_hours) if self.actual_hours is not None else None,
            "estimated_cost": float(self.estimated_cost) if self.estimated_cost is not None else None,
            "actual_cost": float(self.actual_cost) if self.actual_cost is not None else None,
            "resolution": self.resolution,
            "resolution_date": self.resolution_date.isoformat() if self.resolution_date else None,
            "billing_status": self.billing_status,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# ITEMS
# ═════════════════════════════════════════════════════════════════════════════

class TalepItem(db.Model):
    __tablename__ = "talep_items"

    id = db.Column(db.Integer, primary_key=True)
    talep_id = db.Column(
        db.Integer, db.ForeignKey("talepler.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_code = db.Column(db.String(100))
    product_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    manufacturer = db.Column(db.String(255))
    model = db.Column(db.String(255))
    part_number = db.Column(db.String(100))
    specification = db.Column(db.Text)
    specifications = db.Column(db.JSON)
    category = db.Column(db.String(100))

    requested_quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_of_measure = db.Column(db.String(30), nullable=False, default="piece")
    target_price = db.Column(db.Numeric(15, 2))
    currency = db.Column(db.String(3), nullable=False, default="USD")

    export_controlled = db.Column(db.Boolean, default=False)
    itar = db.Column(db.Boolean, default=False)
    end_use_statement = db.Column(db.Text)
    certification_required = db.Column(db.Boolean, default=False)

    status = db.Column(db.String(20), nullable=False, default="requested")
    notes = db.Column(db.Text)
    revision = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    talep = db.relationship("Talep", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "talep_id": self.talep_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "description": self.description,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "part_number": self.part_number,
            "specification": self.specification,
            "specifications": self.specifications,
            "category": self.category,
            "requested_quantity": self.requested_quantity,
            "unit_of_measure": self.unit_of_measure,
            "target_price": float(self.target_price) if self.target_price is not None else None,
            "currency": self.currency,
            "export_controlled": self.export_controlled,
            "itar": self.itar,
            "end_use_statement": self.end_use_statement,
            "certification_required": self.certification_required,
            "status": self.status,
            "notes": self.notes,
            "revision": self.revision,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# NOTES / FILES
# ═════════════════════════════════════════════════════════════════════════════

class TalepNote(db.Model):
    __tablename__ = "talep_notes"

    id = db.Column(db.Integer, primary_key=True)
    talep_id = db.Column(
        db.Integer, db.ForeignKey("talepler.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = db.Column(db.String(255))
    content = db.Column(db.Text, nullable=False)
    note_type = db.Column(db.String(30), nullable=False, default="internal")
    is_internal = db.Column(db.Boolean, nullable=False, default=True)
    is_visible_to_entity = db.Column(db.Boolean, nullable=False, default=False)
    priority = db.Column(db.String(20), default="medium")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    talep = db.relationship("Talep", back_populates="notes")

    def to_dict(self):
        return {
            "id": self.id,
            "talep_id": self.talep_id,
            "title": self.title,
            "content": self.content,
            "note_type": self.note_type,
            "is_internal": self.is_internal,
            "is_visible_to_entity": self.is_visible_to_entity,
            "priority": self.priority,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TalepFile(db.Model):
    __tablename__ = "talep_files"

    id = db.Column(db.Integer, primary_key=True)
    talep_id = db.Column(
        db.Integer, db.ForeignKey("talepler.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(50), default="other")
    blob_url = db.Column(db.String(1000))
    blob_path = db.Column(db.String(1000))
    content_type = db.Column(db.String(100))
    size = db.Column(db.Integer)
    description = db.Column(db.Text)
    is_visible_to_entity = db.Column(db.Boolean, nullable=False, default=False)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    talep = db.relationship("Talep", back_populates="files")

    def to_dict(self):
        return {
            "id": self.id,
            "talep_id": self.talep_id,
            "name": self.name,
            "category": self.category,
            "blob_url": self.blob_url,
            "blob_path": self.blob_path,
            "content_type": self.content_type,
            "size": self.size,
            "description": self.description,
            "is_visible_to_entity": self.is_visible_to_entity,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# ACTIVITY LOG / ACTIONS
# ═════════════════════════════════════════════════════════════════════════════

class TalepActivity(db.Model):
    """Append-only; one row per RequestService mutation."""

    __tablename__ = "talep_activities"

    id = db.Column(db.Integer, primary_key=True)
    talep_id = db.Column(
        db.Integer, db.ForeignKey("talepler.id", ondelete="CASCADE"), nullable=False, index=True
    )
    activity_type = db.Column(db.String(40), nullable=False)
    description = db.Column(db.Text)
    old_value = db.Column(db.Text)
    new_value = db.Column(db.Text)
    metadata_ = db.Column("metadata", db.JSON)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    talep = db.relationship("Talep", back_populates="activities")

    def to_dict(self):
        return {
            "id": self.id,
            "talep_id": self.talep_id,
            "activity_type": self.activity_type,
            "description": self.description,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "metadata": self.metadata_,
            "performed_by": self.performed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TalepAction(db.Model):
    __tablename__ = "talep_actions"

    id = db.Column(db.Integer, primary_key=True)
    talep_id = db.Column(
        db.Integer, db.ForeignKey("talepler.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action_type = db.Column(db.String(50), nullable=False)
    action_category = db.Column(db.String(30), nullable=False, default="other")
    title = db.Column(db.String(255))
    description = db.Column(db.Text, nullable=False)
    communication_type = db.Column(db.String(20))
    contact_person = db.Column(db.String(255))
    contact_email = db.Column(db.String(255))
    contact_phone = db.Column(db.String(30))
    outcome = db.Column(db.String(30))
    follow_up_required = db.Column(db.Boolean, default=False)
    follow_up_date = db.Column(db.DateTime)
    follow_up_notes = db.Column(db.Text)
    related_product_ids = db.Column(db.JSON, default=list)
    attachment_ids = db.Column(db.JSON, default=list)
    duration = db.Column(db.Integer)  # minutes
    action_date = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    talep = db.relationship("Talep", back_populates="actions")

    def to_dict(self):
        return {
            "id": self.id,
            "talep_id": self.talep_id,
            "action_type": self.action_type,
            "action_category": self.action_category,
            "title": self.title,
            "description": self.description,
            "communication_type": self.communication_type,
            "contact_person": self.contact_person,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "outcome": self.outcome,
            "follow_up_required": self.follow_up_required,
            "follow_up_date": self.follow_up_date.isoformat() if self.follow_up_date else None,
            "follow_up_notes": self.follow_up_notes,
            "related_product_ids": self.related_product_ids or [],
            "attachment_ids": self.attachment_ids or [],
            "duration": self.duration,
            "action_date": self.action_date.isoformat() if self.action_date else None,
            "performed_by": self.performed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
