"""
Settings Service — workspace settings, company overrides and feature flags.

Company working-time fields inherit from the workspace when NULL; the
``effective`` block in company responses shows the resolved values.

Feature flag resolution:
  1. company-level flag (workspace_id, company_id, key) if present
  2. workspace-level flag (workspace_id, NULL, key)
  3. unknown key -> disabled
"""

import hashlib
import logging
import re

from lunamanager.core.exceptions import ValidationError
from lunamanager.models import db
from lunamanager.models.settings import (
    FLAG_CATEGORIES,
    INVOICE_NUMBERING,
    WEEK_DAYS,
    CompanySettings,
    FeatureFlag,
    WorkspaceSettings,
)

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

WORKSPACE_FIELDS = (
    "timezone", "currency", "language", "date_format", "working_hours_start",
    "working_hours_end", "working_days", "public_holidays", "custom_settings",
)
COMPANY_FIELDS = (
    "fiscal_year_start", "tax_rate", "invoice_prefix", "invoice_numbering", "timezone", "currency",
    "working_hours_start", "working_hours_end", "working_days", "custom_settings",
)
INHERITED_FIELDS = ("timezone", "currency", "working_hours_start", "working_hours_end", "working_days")


# ── Validation ──────────────────────────────────────────────────────────────

def _validate_working_time(start, end, days):
    for label, value in (("working_hours_start", start), ("working_hours_end", end)):
        if value is not None and not _HHMM.match(str(value)):
            raise ValidationError(f"{label} must be HH:MM")
    if start is not None and end is not None and start >= end:
        raise ValidationError("working_hours_start must be before working_hours_end")
    if days is not None:
        if not isinstance(days, list):
            raise ValidationError("working_days must be a list")
        invalid = [d for d in days if str(d).lower() not in WEEK_DAYS]
        if invalid:
            raise ValidationError(f"Invalid day names: {', '.join(map(str, invalid))}",
                                  details={"allowed": sorted(WEEK_DAYS)})


def _normalized_days(days):
    return [str(d).lower() for d in days] if days is not None else None


# ═════════════════════════════════════════════════════════════════════════════
# Workspace settings
# ═════════════════════════════════════════════════════════════════════════════

def get_workspace_settings(workspace_id: int) -> WorkspaceSettings:
    """Return the row, creating defaults on first read."""
    settings = WorkspaceSettings.query.filter_by(workspace_id=workspace_id).first()
    if settings is None:
        settings = WorkspaceSettings(workspace_id=workspace_id)
        db.session.add(settings)
        db.session.flush()
    return settings


def update_workspace_settings(workspace_id: int, data: dict) -> WorkspaceSettings:
    settings = get_workspace_settings(workspace_id)
    start = data.get("working_hours_start", settings.working_hours_start)
    end = data.get("working_hours_end", settings.working_hours_end)
    _validate_working_time(start, end, data.get("working_days"))

    for field in WORKSPACE_FIELDS:
        if field in data and data[field] is not None:
            value = data[field]
            if field == "working_days":
                value = _normalized_days(value)
            setattr(settings, field, value)
    db.session.flush()
    logger.info("Workspace %s settings updated", workspace_id)
    return settings


# ═════════════════════════════════════════════════════════════════════════════
# Company settings
# ═════════════════════════════════════════════════════════════════════════════

def get_company_settings(company_id: int) -> CompanySettings:
    settings = CompanySettings.query.filter_by(company_id=company_id).first()
    if settings is None:
        settings = CompanySettings(company_id=company_id)
        db.session.add(settings)
        db.session.flush()
    return settings


def company_settings_view(workspace_id: int, company_id: int) -> dict:
    """Company row plus ``effective`` values with workspace fallbacks."""
    company = get_company_settings(company_id)
    workspace = get_workspace_settings(workspace_id)
    d = company.to_dict()
    d["effective"] = {
        field: getattr(company, field) if getattr(company, field) is not None else getattr(workspace, field)
        for field in INHERITED_FIELDS
    }
    return d


def upsert_company_settings(workspace_id: int, company_id: int, data: dict) -> CompanySettings:
    settings = get_company_settings(company_id)
    workspace = get_workspace_settings(workspace_id)

    if data.get("invoice_numbering") is not None and data["invoice_numbering"] not in INVOICE_NUMBERING:
        raise ValidationError(
            f"Invalid invoice_numbering: {data['invoice_numbering']}",
            details={"allowed": sorted(INVOICE_NUMBERING)},
        )
    # Validate against the effective pair so a half override still makes sense
    start = data.get("working_hours_start", settings.working_hours_start) or workspace.working_hours_start
    end = data.get("working_hours_end", settings.working_hours_end) or workspace.working_hours_end
    _validate_working_time(start, end, data.get("working_days"))

    for field in COMPANY_FIELDS:
        if field in data:
            value = data[field]
            if field == "working_days":
                value = _normalized_days(value)
            if field == "tax_rate" and value is not None:
                value = str(value)
            setattr(settings, field, value)
    db.session.flush()
    logger.info("Company %s settings updated", company_id)
    return settings


# ═════════════════════════════════════════════════════════════════════════════
# Feature flags
# ═════════════════════════════════════════════════════════════════════════════

def list_flags(workspace_id: int, company_id: int | None = None) -> list[FeatureFlag]:
    q = FeatureFlag.query.filter_by(workspace_id=workspace_id)
    if company_id is None:
        q = q.filter(FeatureFlag.company_id.is_(None))
    else:
        q = q.filter((FeatureFlag.company_id == company_id) | FeatureFlag.company_id.is_(None))
    return q.order_by(FeatureFlag.key, FeatureFlag.company_id).all()


def upsert_flag(workspace_id: int, company_id: int | None, data: dict):
    """Create or update a flag by key in its scope. Returns (flag, created)."""
    key = data["key"]
    category = data.get("category")
    if category is not None and category not in FLAG_CATEGORIES:
        raise ValidationError(f"Invalid category: {category}", details={"allowed": sorted(FLAG_CATEGORIES)})
    rollout = data.get("rollout_percentage")
    if rollout is not None and not (0 <= int(rollout) <= 100):
        raise ValidationError("rollout_percentage must be between 0 and 100")

    q = FeatureFlag.query.filter_by(workspace_id=workspace_id, key=key)
    q = q.filter(FeatureFlag.company_id.is_(None) if company_id is None else FeatureFlag.company_id == company_id)
    flag = q.first()
    created = flag is None
    if created:
        flag = FeatureFlag(workspace_id=workspace_id, company_id=company_id, key=key, name=data.get("name") or key)
        db.session.add(flag)

    for field in ("name", "description", "category"):
        if data.get(field) is not None:
            setattr(flag, field, data[field])
    if "is_enabled" in data:
        flag.is_enabled = bool(data["is_enabled"])
    if rollout is not None:
        flag.rollout_percentage = int(rollout)
    db.session.flush()
    logger.info("Flag %s (workspace=%s company=%s) -> %s", key, workspace_id, company_id, flag.is_enabled)
    return flag, created


def _in_rollout(flag: FeatureFlag, subject) -> bool:
    if flag.rollout_percentage >= 100:
        return True
    if flag.rollout_percentage <= 0 or subject is None:
        return False
    digest = hashlib.sha256(f"{flag.key}:{subject}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % 100 < flag.rollout_percentage


def evaluate_flag(workspace_id: int, key: str, company_id: int | None = None, subject=None) -> dict:
    """
    Resolve one flag. ``subject`` (usually the user id) buckets partial rollouts.

    Returns ``{"key", "enabled", "source"}`` with source in
    company | workspace | default.
    """
    flag = None
    source = "default"
    if company_id is not None:
        flag = FeatureFlag.query.filter_by(workspace_id=workspace_id, company_id=company_id, key=key).first()
        source = "company" if flag else source
    if flag is None:
        flag = FeatureFlag.query.filter(
            FeatureFlag.workspace_id == workspace_id,
            FeatureFlag.company_id.is_(None),
            FeatureFlag.key == key,
        ).first()
        source = "workspace" if flag else source

    enabled = bool(flag and flag.is_enabled and _in_rollout(flag, subject))
    return {"key": key, "enabled": enabled, "source": source}
