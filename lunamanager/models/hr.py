"""
HR models — employee profiles, their documents and position history.

An EmployeeProfile is the HR view of a workspace member inside one company.
``national_id`` is stored Fernet-encrypted (see utils/crypto.py).
"""

from datetime import datetime, timezone

from lunamanager.models import db
from lunamanager.models.base import CompanyScopedModel

EMPLOYMENT_TYPES = {"full_time", "part_time", "contractor", "intern", "temporary"}
GENDERS = {"female", "male", "other", "undisclosed"}
EMPLOYEE_FILE_CATEGORIES = {"contract", "identity", "certificate", "payroll", "health", "other"}


class EmployeeProfile(CompanyScopedModel):
    __tablename__ = "employee_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    national_id_encrypted = db.Column(db.Text)
    birth_date = db.Column(db.Date)
    gender = db.Column(db.String(20))
    address = db.Column(db.Text)
    phone = db.Column(db.String(30))
    emergency_contact_name = db.Column(db.String(255))
    emergency_contact_phone = db.Column(db.String(30))

    position = db.Column(db.String(255))
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    employment_type = db.Column(db.String(20), nullable=False, default="full_time")
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "workspace_id", "company_id", "user_id", name="uq_employee_profile_scope_user"
        ),
    )

    user = db.relationship("User", foreign_keys=[user_id])
    department = db.relationship("Department")
    unit = db.relationship("Unit")
    files = db.relationship(
        "EmployeeFile", back_populates="profile", lazy="dynamic", cascade="all, delete-orphan"
    )
    position_changes = db.relationship(
        "EmployeePositionChange", back_populates="profile", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, national_id=None):
        """Serialise; the caller passes the decrypted national id when allowed to see it."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "user": self.user.to_brief() if self.user else None,
            "national_id": national_id,
            "has_national_id": bool(self.national_id_encrypted),
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "gender": self.gender,
            "address": self.address,
            "phone": self.phone,
            "emergency_contact_name": self.emergency_contact_name,
            "emergency_contact_phone": self.emergency_contact_phone,
            "position": self.position,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "unit_id": self.unit_id,
            "unit_name": self.unit.name if self.unit else None,
            "manager_id": self.manager_id,
            "employment_type": self.employment_type,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class EmployeeFile(db.Model):
    __tablename__ = "employee_files"

    id = db.Column(db.Integer, primary_key=True)
    profile_id = db.Column(
        db.Integer, db.ForeignKey("employee_profiles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(50), default="other")
    blob_url = db.Column(db.String(1000))
    content_type = db.Column(db.String(100))
    size = db.Column(db.Integer)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    profile = db.relationship("EmployeeProfile", back_populates="files")

    def to_dict(self):
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "name": self.name,
            "category": self.category,
            "blob_url": self.blob_url,
            "content_type": self.content_type,
            "size": self.size,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class EmployeePositionChange(db.Model):
    __tablename__ = "employee_position_changes"

    id = db.Column(db.Integer, primary_key=True)
    profile_id = db.Column(
        db.Integer, db.ForeignKey("employee_profiles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    previous_position = db.Column(db.String(255))
    new_position = db.Column(db.String(255))
    previous_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )
    new_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )
    previous_unit_id = db.Column(db.Integer, db.ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    new_unit_id = db.Column(db.Integer, db.ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    reason = db.Column(db.Text)
    effective_date = db.Column(db.Date, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    profile = db.relationship("EmployeeProfile", back_populates="position_changes")
    previous_department = db.relationship("Department", foreign_keys=[previous_department_id])
    new_department = db.relationship("Department", foreign_keys=[new_department_id])
    previous_unit = db.relationship("Unit", foreign_keys=[previous_unit_id])
    new_unit = db.relationship("Unit", foreign_keys=[new_unit_id])

    def to_dict(self):
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "previous_position": self.previous_position,
            "new_position": self.new_position,
            "previous_department_id": self.previous_department_id,
            "previous_department_name": self.previous_department.name if self.previous_department else None,
            "new_department_id": self.new_department_id,
            "new_department_name": self.new_department.name if self.new_department else None,
            "previous_unit_id": self.previous_unit_id,
            "previous_unit_name": self.previous_unit.name if self.previous_unit else None,
            "new_unit_id": self.new_unit_id,
            "new_unit_name": self.new_unit.name if self.new_unit else None,
            "reason": self.reason,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
