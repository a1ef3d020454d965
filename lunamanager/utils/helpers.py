"""Shared helpers for blueprints, services and models.

parse_date / parse_datetime:  lenient parsers (None on bad input)
parse_int / parse_decimal:    numeric coercion with ValueError on garbage
normalize_body:               form placeholders ("" / "select") -> None
db_commit_or_error:           commit the request transaction or return an error tuple
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import jsonify

from lunamanager.models import db

logger = logging.getLogger(__name__)

# Values web forms send for "nothing selected"
EMPTY_FORM_VALUES = ("", "select")


def as_utc(value):
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (datetime ISO -> .date())
    - DD.MM.YYYY (Turkish format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO datetime (``Z`` suffix allowed) or a bare date."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        pass
    d = parse_date(value)
    if d is None:
        return None
    return datetime(d.year, d.month, d.day)


def parse_int(value, field, *, minimum=None, default=None):
    """Coerce to int; raise ValueError with a client-facing message."""
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"{field} must be an integer") from exc
    if minimum is not None and number < minimum:
        raise ValueError(f"{field} must be >= {minimum}")
    return number


def parse_decimal(value, field):
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field} must be a number") from exc


def normalize_body(data: dict) -> dict:
    """Turn empty strings and the ``"select"`` placeholder into None.

    Strings are stripped; other values pass through unchanged.
    """
    cleaned = {}
    for key, value in (data or {}).items():
        if isinstance(value, str):
            value = value.strip()
            if value in EMPTY_FORM_VALUES:
                value = None
        cleaned[key] = value
    return cleaned


def page_args(args, default_limit=20, max_limit=100):
    """Read ``page`` / ``limit`` query params (1-based page)."""
    try:
        page = max(int(args.get("page", 1)), 1)
    except (ValueError, TypeError):
        page = 1
    try:
        limit = min(max(int(args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    return page, limit


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure, ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError -> 409 (duplicate / constraint violation)
    OperationalError -> 500 (connection / lock issues)
    Other -> 500 (unexpected)
    """
    from sqlalchemy.exc import IntegrityError, OperationalError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({"error": "Duplicate or constraint violation"}), 409
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return jsonify({"error": "Database error"}), 500
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return jsonify({"error": "Database error"}), 500
