"""
Product Service — workspace product catalogue.

SKU is unique per workspace. ``company_id`` optionally pins a product to a
company linked to the workspace.
"""

import logging
import math

from sqlalchemy import func, or_

from lunamanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from lunamanager.models import db
from lunamanager.models.company import Company
from lunamanager.models.product import PRODUCT_STATUSES, PRODUCT_TYPES, Product
from lunamanager.services.workspace_service import workspace_companies_query

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    "name", "sku", "barcode", "description", "product_type", "product_category", "status", "unit",
    "base_price", "currency", "tax_rate", "manufacturer", "brand", "model",
    "track_inventory", "min_stock_level", "specifications", "tags", "notes", "company_id",
)

SORT_COLUMNS = {
    "name": Product.name,
    "sku": Product.sku,
    "price": Product.base_price,
    "createdAt": Product.created_at,
    "updatedAt": Product.updated_at,
}


def _validate(workspace_id: int, data: dict, product: Product | None = None) -> None:
    if data.get("product_type") is not None and data["product_type"] not in PRODUCT_TYPES:
        raise ValidationError(
            f"Invalid product_type: {data['product_type']}", details={"allowed": sorted(PRODUCT_TYPES)}
        )
    if data.get("status") is not None and data["status"] not in PRODUCT_STATUSES:
        raise ValidationError(
            f"Invalid status: {data['status']}", details={"allowed": sorted(PRODUCT_STATUSES)}
        )

    sku = data.get("sku")
    if sku:
        q = Product.query.filter(Product.workspace_id == workspace_id, Product.sku == sku)
        if product is not None:
            q = q.filter(Product.id != product.id)
        if q.first():
            raise ConflictError("Product", "sku", sku)

    company_id = data.get("company_id")
    if company_id is not None:
        if not workspace_companies_query(workspace_id).filter(Company.id == company_id).first():
            raise NotFoundError("Company", company_id, workspace_id=workspace_id)


def get_product(workspace_id: int, product_id) -> Product:
    product = Product.query_active().filter_by(id=product_id, workspace_id=workspace_id).first()
    if product is None:
        raise NotFoundError("Product", product_id, workspace_id=workspace_id)
    return product


def list_products(workspace_id: int, filters: dict, page: int, limit: int) -> dict:
    q = Product.query_active().filter_by(workspace_id=workspace_id)

    search = (filters.get("search") or "").strip()
    if search:
        term = f"%{search.lower()}%"
        q = q.filter(or_(
            func.lower(Product.name).like(term),
            func.lower(Product.sku).like(term),
            func.lower(Product.barcode).like(term),
            func.lower(Product.manufacturer).like(term),
            func.lower(Product.brand).like(term),
        ))
    for key, column in (
        ("status", Product.status),
        ("category", Product.product_category),
        ("type", Product.product_type),
    ):
        value = filters.get(key)
        if value and value != "all":
            q = q.filter(column == value)
    if filters.get("companyId"):
        q = q.filter(Product.company_id == int(filters["companyId"]))

    column = SORT_COLUMNS.get(filters.get("sortBy") or "createdAt", Product.created_at)
    order = column.asc() if filters.get("sortOrder") == "asc" else column.desc()

    total = q.count()
    rows = q.order_by(order, Product.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [p.to_dict() for p in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def create_product(workspace_id: int, data: dict, user_id: int) -> Product:
    _validate(workspace_id, data)
    product = Product(
        workspace_id=workspace_id,
        created_by=user_id,
        updated_by=user_id,
        **{k: data[k] for k in PRODUCT_FIELDS if data.get(k) is not None},
    )
    db.session.add(product)
    db.session.flush()
    logger.info("Product %s (%s) created in workspace %s", product.id, product.sku, workspace_id)
    return product


def update_product(product: Product, data: dict, user_id: int) -> Product:
    for field in ("name", "sku"):
        if field in data and not data.get(field):
            raise ValidationError(f"{field} is required")
    _validate(product.workspace_id, data, product)
    for field in PRODUCT_FIELDS:
        if field in data:
            setattr(product, field, data[field])
    product.updated_by = user_id
    db.session.flush()
    return product


def delete_product(product: Product) -> None:
    product.soft_delete()
    db.session.flush()
    logger.info("Product %s soft-deleted", product.id)
