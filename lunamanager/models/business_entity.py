"""
Business entity models — customers and suppliers in one table.

``entity_type`` decides which list an entity shows up in:
    supplier  -> suppliers only
    customer  -> customers only
    both      -> both lists

Sub-resources (addresses, contacts, notes, files, activities) cascade with
the parent row. Entities themselves are soft deleted.
"""

from datetime import datetime, timezone

from lunamanager.models import db
from lunamanager.models.base import CompanyScopedModel
from lunamanager.models.soft_delete import SoftDeleteMixin

# ── Enumerations ─────────────────────────────────────────────────────────────
ENTITY_TYPES = {"supplier", "customer", "both"}
ENTITY_CATEGORIES = {
    "manufacturer", "distributor", "reseller", "service_provider", "government",
    "defense_contractor", "sub_contractor", "consultant", "logistics", "other",
}
ENTITY_STATUSES = {"active", "inactive", "pending", "suspended", "blocked"}
ENTITY_PRIORITIES = {"low", "medium", "high", "critical"}
BUSINESS_TYPES = {"company", "individual", "government", "non_profit"}

# Customer / supplier specific vocabularies, kept for the dedicated lists
CUSTOMER_TYPES = {"individual", "corporate"}
CUSTOMER_CATEGORIES = {"vip", "premium", "standard", "basic", "wholesale", "retail"}
SUPPLIER_CATEGORIES = {"strategic", "preferred", "approved", "standard", "new", "temporary"}

ADDRESS_TYPES = {"billing", "shipping", "headquarters", "branch", "warehouse", "other"}
NOTE_TYPES = {"general", "meeting", "call", "email", "complaint", "follow_up", "internal"}
ACTIVITY_TYPES = {
    "created", "updated", "deleted", "note_added", "contact_added", "address_added",
    "file_uploaded", "status_change", "call", "meeting", "email",
}


class BusinessEntity(SoftDeleteMixin, CompanyScopedModel):
    __tablename__ = "business_entities"

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(20), nullable=False, default="customer")
    name = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(500))
    entity_category = db.Column(db.String(50))
    business_type = db.Column(db.String(50), nullable=False, default="company")
    status = db.Column(db.String(20), nullable=False, default="active")
    industry = db.Column(db.String(100))
    priority = db.Column(db.String(20), nullable=False, default="medium")

    # Contact
    phone = db.Column(db.String(30))
    email = db.Column(db.String(255))
    website = db.Column(db.String(255))
    fax = db.Column(db.String(30))
    address = db.Column(db.Text)
    district = db.Column(db.String(100))
    city = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    country = db.Column(db.String(100), default="Türkiye")

    # Legal / tax
    tax_office = db.Column(db.String(100))
    tax_number = db.Column(db.String(20))
    mersis_number = db.Column(db.String(20))
    trade_registry_number = db.Column(db.String(50))

    # Finance
    default_currency = db.Column(db.String(3), nullable=False, default="TRY")
    credit_limit = db.Column(db.Numeric(15, 2))
    payment_terms = db.Column(db.Integer)  # days
    discount_rate = db.Column(db.Numeric(5, 2))

    # Codes
    entity_code = db.Column(db.String(50))
    supplier_code = db.Column(db.String(50))
    customer_code = db.Column(db.String(50))

    # Supplier terms
    lead_time_days = db.Column(db.Integer)
    minimum_order_quantity = db.Column(db.Integer)
    quality_rating = db.Column(db.Numeric(3, 1))
    delivery_rating = db.Column(db.Numeric(3, 1))

    # Defense
    defense_contractor = db.Column(db.Boolean, default=False)
    export_license = db.Column(db.Boolean, default=False)
    security_clearance = db.Column(db.String(50))
    certifications = db.Column(db.JSON, default=list)

    # Primary contact (denormalised for list views)
    primary_contact_name = db.Column(db.String(255))
    primary_contact_title = db.Column(db.String(100))
    primary_contact_phone = db.Column(db.String(30))
    primary_contact_email = db.Column(db.String(255))

    parent_entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="SET NULL"), nullable=True
    )
    entity_group = db.Column(db.String(100))
    tags = db.Column(db.JSON, default=list)
    notes = db.Column(db.Text)
    internal_notes = db.Column(db.Text)
    metadata_ = db.Column("metadata", db.JSON)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("company_id", "tax_number", name="uq_business_entity_company_tax"),
        db.UniqueConstraint("company_id", "entity_code", name="uq_business_entity_company_code"),
        db.Index("ix_business_entities_scope_type", "workspace_id", "company_id", "entity_type"),
    )

    addresses = db.relationship(
        "BusinessEntityAddress", back_populates="entity", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    contacts = db.relationship(
        "BusinessEntityContact", back_populates="entity", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    entity_notes = db.relationship(
        "BusinessEntityNote", back_populates="entity", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    files = db.relationship(
        "BusinessEntityFile", back_populates="entity", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    activities = db.relationship(
        "BusinessEntityActivity", back_populates="entity", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "entity_type": self.entity_type,
            "name": self.name,
            "full_name": self.full_name,
            "entity_category": self.entity_category,
            "business_type": self.business_type,
            "status": self.status,
            "industry": self.industry,
            "priority": self.priority,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "fax": self.fax,
            "address": self.address,
            "district": self.district,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "tax_office": self.tax_office,
            "tax_number": self.tax_number,
            "mersis_number": self.mersis_number,
            "trade_registry_number": self.trade_registry_number,
            "default_currency": self.default_currency,
            "credit_limit": float(self.credit_limit) if self.credit_limit is not None else None,
            "payment_terms": self.payment_terms,
            "discount_rate": float(self.discount_rate) if self.discount_rate is not None else None,
            "entity_code": self.entity_code,
            "supplier_code": self.supplier_code,
            "customer_code": self.customer_code,
            "lead_time_days": self.lead_time_days,
            "minimum_order_quantity": self.minimum_order_quantity,
            "quality_rating": float(self.quality_rating) if self.quality_rating is not None else None,
            "delivery_rating": float(self.delivery_rating) if self.delivery_rating is not None else None,
            "defense_contractor": self.defense_contractor,
            "export_license": self.export_license,
            "security_clearance": self.security_clearance,
            "certifications": self.certifications or [],
            "primary_contact_name": self.primary_contact_name,
            "primary_contact_title": self.primary_contact_title,
            "primary_contact_phone": self.primary_contact_phone,
            "primary_contact_email": self.primary_contact_email,
            "parent_entity_id": self.parent_entity_id,
            "entity_group": self.entity_group,
            "tags": self.tags or [],
            "notes": self.notes,
            "internal_notes": self.internal_notes,
            "metadata": self.metadata_,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# SUB-RESOURCES
# ═════════════════════════════════════════════════════════════════════════════

class BusinessEntityAddress(db.Model):
    __tablename__ = "business_entity_addresses"

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    address_type = db.Column(db.String(20), nullable=False, default="billing")
    title = db.Column(db.String(255))
    address = db.Column(db.Text, nullable=False)
    district = db.Column(db.String(100))
    city = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    country = db.Column(db.String(100), default="Türkiye")
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entity = db.relationship("BusinessEntity", back_populates="addresses")

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "address_type": self.address_type,
            "title": self.title,
            "address": self.address,
            "district": self.district,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class BusinessEntityContact(db.Model):
    __tablename__ = "business_entity_contacts"

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    title = db.Column(db.String(100))
    department = db.Column(db.String(100))
    phone = db.Column(db.String(30))
    mobile = db.Column(db.String(30))
    email = db.Column(db.String(255))
    role = db.Column(db.String(50))  # decision_maker, technical, finance, ...
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entity = db.relationship("BusinessEntity", back_populates="contacts")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "title": self.title,
            "department": self.department,
            "phone": self.phone,
            "mobile": self.mobile,
            "email": self.email,
            "role": self.role,
            "is_primary": self.is_primary,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class BusinessEntityNote(db.Model):
    __tablename__ = "business_entity_notes"

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(255))
    content = db.Column(db.Text, nullable=False)
    note_type = db.Column(db.String(20), nullable=False, default="general")
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    priority = db.Column(db.String(20), default="medium")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entity = db.relationship("BusinessEntity", back_populates="entity_notes")

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "title": self.title,
            "content": self.content,
            "note_type": self.note_type,
            "is_internal": self.is_internal,
            "priority": self.priority,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class BusinessEntityFile(db.Model):
    __tablename__ = "business_entity_files"

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(50), default="other")
    blob_url = db.Column(db.String(1000))
    content_type = db.Column(db.String(100))
    size = db.Column(db.Integer)
    description = db.Column(db.Text)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    entity = db.relationship("BusinessEntity", back_populates="files")

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "name": self.name,
            "category": self.category,
            "blob_url": self.blob_url,
            "content_type": self.content_type,
            "size": self.size,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class BusinessEntityActivity(db.Model):
    __tablename__ = "business_entity_activities"

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(
        db.Integer, db.ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    activity_type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    outcome = db.Column(db.String(100))
    follow_up_required = db.Column(db.Boolean, default=False)
    follow_up_date = db.Column(db.Date)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    entity = db.relationship("BusinessEntity", back_populates="activities")

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "activity_type": self.activity_type,
            "title": self.title,
            "description": self.description,
            "outcome": self.outcome,
            "follow_up_required": self.follow_up_required,
            "follow_up_date": self.follow_up_date.isoformat() if self.follow_up_date else None,
            "performed_by": self.performed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
