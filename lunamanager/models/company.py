"""
Company models — companies and their internal structure.

Company
  ├── Department (self-referencing parent_department_id)
  │     └── Unit
  ├── CompanyLocation (one headquarters at most)
  └── CompanyFile
        └── CompanyFileVersion (exactly one is_current per file)

Companies are linked to workspaces through WorkspaceCompany, so the same
legal entity can appear in more than one workspace.
"""

from datetime import datetime, timezone

from lunamanager.models import db
from lunamanager.models.soft_delete import SoftDeleteMixin

COMPANY_STATUSES = {"active", "inactive", "onboarding", "suspended", "lead"}
FILE_CATEGORIES = {"contract", "legal", "finance", "hr", "technical", "other"}


# ═════════════════════════════════════════════════════════════════════════════
# COMPANY
# ═════════════════════════════════════════════════════════════════════════════

class Company(SoftDeleteMixin, db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(500))
    status = db.Column(db.String(20), nullable=False, default="active")
    industry = db.Column(db.String(100))

    phone = db.Column(db.String(30))
    email = db.Column(db.String(255))
    website = db.Column(db.String(255))
    address = db.Column(db.Text)
    district = db.Column(db.String(100))
    city = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))

    tax_office = db.Column(db.String(100))
    tax_number = db.Column(db.String(20), unique=True)
    mersis_number = db.Column(db.String(20), unique=True)
    default_currency = db.Column(db.String(3), nullable=False, default="TRY")

    parent_company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    notes = db.Column(db.Text)
    metadata_ = db.Column("metadata", db.JSON)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    departments = db.relationship(
        "Department", back_populates="company", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "status": self.status,
            "industry": self.industry,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "address": self.address,
            "district": self.district,
            "city": self.city,
            "postal_code": self.postal_code,
            "tax_office": self.tax_office,
            "tax_number": self.tax_number,
            "mersis_number": self.mersis_number,
            "default_currency": self.default_currency,
            "parent_company_id": self.parent_company_id,
            "notes": self.notes,
            "metadata": self.metadata_,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# DEPARTMENT / UNIT
# ═════════════════════════════════════════════════════════════════════════════

class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )
    code = db.Column(db.String(50))
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    responsibility_area = db.Column(db.Text)
    # {"shortTerm": ..., "mediumTerm": ..., "longTerm": ...}
    goals = db.Column(db.JSON)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    mail_address = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_department_company_name"),
        db.UniqueConstraint("company_id", "code", name="uq_department_company_code"),
    )

    company = db.relationship("Company", back_populates="departments")
    units = db.relationship(
        "Unit", back_populates="department", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self, include_units=False):
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "parent_department_id": self.parent_department_id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "responsibility_area": self.responsibility_area,
            "goals": self.goals or {},
            "manager_id": self.manager_id,
            "mail_address": self.mail_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_units:
            d["units"] = [u.to_dict() for u in self.units.order_by(Unit.name).all()]
        return d


class Unit(db.Model):
    __tablename__ = "units"

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    staff_count = db.Column(db.Integer, default=0)
    lead_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("department_id", "name", name="uq_unit_department_name"),
    )

    department = db.relationship("Department", back_populates="units")

    def to_dict(self):
        return {
            "id": self.id,
            "department_id": self.department_id,
            "name": self.name,
            "description": self.description,
            "staff_count": self.staff_count,
            "lead_id": self.lead_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# LOCATIONS
# ═════════════════════════════════════════════════════════════════════════════

class CompanyLocation(SoftDeleteMixin, db.Model):
    __tablename__ = "company_locations"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(50))
    location_type = db.Column(db.String(50))  # office, warehouse, factory, ...
    phone = db.Column(db.String(30))
    email = db.Column(db.String(255))
    address = db.Column(db.Text)
    district = db.Column(db.String(100))
    city = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    country = db.Column(db.String(100), default="Türkiye")
    is_headquarters = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text)
    metadata_ = db.Column("metadata", db.JSON)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "code": self.code,
            "location_type": self.location_type,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "district": self.district,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "is_headquarters": self.is_headquarters,
            "notes": self.notes,
            "metadata": self.metadata_,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# FILES (metadata only; blobs live in external storage)
# ═════════════════════════════════════════════════════════════════════════════

class CompanyFile(SoftDeleteMixin, db.Model):
    __tablename__ = "company_files"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(50), default="other")
    description = db.Column(db.Text)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    versions = db.relationship(
        "CompanyFileVersion", back_populates="file", lazy="dynamic",
        cascade="all, delete-orphan", order_by="CompanyFileVersion.version_number",
    )

    @property
    def current_version(self):
        return self.versions.filter_by(is_current=True).first()

    def to_dict(self, include_versions=False):
        current = self.current_version
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "current_version": current.to_dict() if current else None,
            "version_count": self.versions.count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_versions:
            d["versions"] = [v.to_dict() for v in self.versions.all()]
        return d


class CompanyFileVersion(db.Model):
    __tablename__ = "company_file_versions"

    id = db.Column(db.Integer, primary_key=True)
    file_id = db.Column(
        db.Integer, db.ForeignKey("company_files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number = db.Column(db.Integer, nullable=False)
    blob_url = db.Column(db.String(1000), nullable=False)
    blob_path = db.Column(db.String(1000))
    content_type = db.Column(db.String(100))
    size = db.Column(db.Integer)
    notes = db.Column(db.Text)
    is_current = db.Column(db.Boolean, nullable=False, default=False)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("file_id", "version_number", name="uq_company_file_version"),
    )

    file = db.relationship("CompanyFile", back_populates="versions")

    def to_dict(self):
        return {
            "id": self.id,
            "file_id": self.file_id,
            "version_number": self.version_number,
            "blob_url": self.blob_url,
            "blob_path": self.blob_path,
            "content_type": self.content_type,
            "size": self.size,
            "notes": self.notes,
            "is_current": self.is_current,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
