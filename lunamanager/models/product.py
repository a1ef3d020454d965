"""
Product catalogue — workspace-wide, optionally pinned to one company.
"""

from datetime import datetime, timezone

from lunamanager.models import db
from lunamanager.models.base import WorkspaceModel
from lunamanager.models.soft_delete import SoftDeleteMixin

PRODUCT_TYPES = {"physical", "digital", "service", "bundle"}
PRODUCT_STATUSES = {"active", "inactive", "discontinued", "draft"}


class Product(SoftDeleteMixin, WorkspaceModel):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(100), nullable=False)
    barcode = db.Column(db.String(100))
    description = db.Column(db.Text)
    product_type = db.Column(db.String(20), nullable=False, default="physical")
    product_category = db.Column(db.String(100))
    status = db.Column(db.String(20), nullable=False, default="active")
    unit = db.Column(db.String(30), nullable=False, default="piece")

    base_price = db.Column(db.Numeric(15, 2))
    currency = db.Column(db.String(3), nullable=False, default="TRY")
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=18)

    manufacturer = db.Column(db.String(255))
    brand = db.Column(db.String(255))
    model = db.Column(db.String(255))

    track_inventory = db.Column(db.Boolean, nullable=False, default=False)
    min_stock_level = db.Column(db.Integer)

    specifications = db.Column(db.JSON)
    tags = db.Column(db.JSON, default=list)
    notes = db.Column(db.Text)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("workspace_id", "sku", name="uq_product_workspace_sku"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "company_id": self.company_id,
            "name": self.name,
            "sku": self.sku,
            "barcode": self.barcode,
            "description": self.description,
            "product_type": self.product_type,
            "product_category": self.product_category,
            "status": self.status,
            "unit": self.unit,
            "base_price": float(self.base_price) if self.base_price is not None else None,
            "currency": self.currency,
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else None,
            "manufacturer": self.manufacturer,
            "brand": self.brand,
            "model": self.model,
            "track_inventory": self.track_inventory,
            "min_stock_level": self.min_stock_level,
            "specifications": self.specifications,
            "tags": self.tags or [],
            "notes": self.notes,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
