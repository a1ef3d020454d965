"""
Activity Service — user activity log writes, listings and retention.

record_activity() only flushes, so an activity commits or rolls back with
the business change it describes. Unknown activity names get a type on
first use; the category is the part before the first dot.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import has_request_context, request
from sqlalchemy import func

from lunamanager.core.exceptions import ValidationError
from lunamanager.models import db
from lunamanager.models.activity import (
    ACTIVITY_CATEGORIES,
    ACTIVITY_STATUSES,
    DEFAULT_ACTIVITY_TYPES,
    ActivityType,
    UserActivity,
)
from lunamanager.models.auth import User
from lunamanager.utils.helpers import as_utc

logger = logging.getLogger(__name__)

MAX_SUMMARY_DAYS = 365


def get_or_create_type(name: str) -> ActivityType:
    activity_type = ActivityType.query.filter_by(name=name).first()
    if activity_type is not None:
        return activity_type

    category = name.split(".", 1)[0]
    if category not in ACTIVITY_CATEGORIES:
        raise ValidationError(
            f"Invalid activity category: {category}", details={"allowed": sorted(ACTIVITY_CATEGORIES)}
        )
    display_name, severity = DEFAULT_ACTIVITY_TYPES.get(name, (name, "info"))
    activity_type = ActivityType(name=name, display_name=display_name, category=category, severity=severity)
    db.session.add(activity_type)
    db.session.flush()
    return activity_type


def seed_activity_types() -> int:
    """Create the default activity types; returns how many were added."""
    before = ActivityType.query.count()
    for name in DEFAULT_ACTIVITY_TYPES:
        get_or_create_type(name)
    return ActivityType.query.count() - before


def record_activity(
    name: str,
    *,
    user_id: int | None = None,
    user_email: str | None = None,
    workspace_id: int | None = None,
    company_id: int | None = None,
    resource_type: str | None = None,
    resource_id=None,
    resource_name: str | None = None,
    metadata: dict | None = None,
    status: str = "success",
    error_message: str | None = None,
) -> UserActivity:
    """
    Append one activity row (already flushed).

    ``name`` is a dotted activity type such as ``auth.login``; its last
    segment becomes the action. Actor email and name are looked up from
    ``user_id`` unless ``user_email`` is given (failed logins).
    """
    activity_type = get_or_create_type(name)
    user = db.session.get(User, user_id) if user_id is not None else None

    ip_address = user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:500]

    now = datetime.now(timezone.utc)
    row = UserActivity(
        user_id=user_id,
        user_email=user.email if user else user_email,
        user_name=user.name if user else None,
        activity_type_id=activity_type.id,
        action=name.rsplit(".", 1)[-1],
        workspace_id=workspace_id,
        company_id=company_id,
        resource_type=resource_type,
        resource_id=None if resource_id is None else str(resource_id),
        resource_name=resource_name,
        metadata_=metadata,
        status=status,
        error_message=error_message,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=now,
        expires_at=now + timedelta(days=activity_type.retention_days),
    )
    db.session.add(row)
    db.session.flush()
    return row


def list_activities(filters: dict, page: int, limit: int, workspace_id=None, user_id=None) -> dict:
    """
    Newest-first activity page.

    Filters: category, type (activity name prefix), status, userId,
    companyId, resourceType.
    """
    q = UserActivity.query.join(ActivityType, ActivityType.id == UserActivity.activity_type_id)
    if workspace_id is not None:
        q = q.filter(UserActivity.workspace_id == workspace_id)
    if user_id is not None:
        q = q.filter(UserActivity.user_id == user_id)

    if filters.get("category"):
        q = q.filter(ActivityType.category == filters["category"])
    if filters.get("type"):
        q = q.filter(ActivityType.name.startswith(filters["type"]))
    status = filters.get("status")
    if status:
        if status not in ACTIVITY_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"allowed": sorted(ACTIVITY_STATUSES)})
        q = q.filter(UserActivity.status == status)
    for key, column in (("userId", UserActivity.user_id), ("companyId", UserActivity.company_id)):
        if filters.get(key) is not None:
            q = q.filter(column == filters[key])
    if filters.get("resourceType"):
        q = q.filter(UserActivity.resource_type == filters["resourceType"])

    total = q.count()
    rows = (
        q.order_by(UserActivity.created_at.desc(), UserActivity.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"items": [r.to_dict() for r in rows], "total": total, "page": page, "limit": limit}


def summarize(workspace_id: int, days: int = 30) -> list[dict]:
    """
    Daily counts for the last ``days`` days, grouped by date, category,
    activity type and status, newest day first and busiest group first.
    """
    if not 1 <= days <= MAX_SUMMARY_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_SUMMARY_DAYS}")
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = (
        db.session.query(
            UserActivity.created_at, UserActivity.user_id, UserActivity.status,
            ActivityType.category, ActivityType.name,
        )
        .join(ActivityType, ActivityType.id == UserActivity.activity_type_id)
        .filter(UserActivity.workspace_id == workspace_id, UserActivity.created_at >= since)
        .all()
    )

    groups: dict[tuple, dict] = {}
    for created_at, user_id, status, category, name in rows:
        key = (as_utc(created_at).date().isoformat(), category, name, status)
        group = groups.setdefault(key, {"count": 0, "users": set()})
        group["count"] += 1
        if user_id is not None:
            group["users"].add(user_id)

    summary = [
        {
            "date": day,
            "category": category,
            "activity_type": name,
            "status": status,
            "activity_count": group["count"],
            "unique_users": len(group["users"]),
        }
        for (day, category, name, status), group in groups.items()
    ]
    summary.sort(key=lambda s: s["activity_type"])
    summary.sort(key=lambda s: s["activity_count"], reverse=True)
    summary.sort(key=lambda s: s["date"], reverse=True)
    return summary


def purge_expired(now: datetime | None = None) -> int:
    """Delete activities past their retention date. Returns the row count."""
    now = now or datetime.now(timezone.utc)
    deleted = (
        UserActivity.query
        .filter(UserActivity.expires_at.isnot(None), UserActivity.expires_at < now)
        .delete(synchronize_session=False)
    )
    logger.info("Purged %d expired activities", deleted)
    return deleted


def count_by_category(workspace_id: int) -> dict:
    rows = (
        db.session.query(ActivityType.category, func.count(UserActivity.id))
        .join(UserActivity, UserActivity.activity_type_id == ActivityType.id)
        .filter(UserActivity.workspace_id == workspace_id)
        .group_by(ActivityType.category)
        .all()
    )
    return {category: count for category, count in rows}
