"""
Rate limiting — per-blueprint limits on top of Flask-Limiter.

The Limiter instance lives in lunamanager/__init__.py with no default
limits; this module attaches limits by route category.

Usage:
    from lunamanager.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Credential endpoints: brute-force protection
AUTH_LIMIT = "20/minute"
# Public token endpoints (invitation lookup / accept)
PUBLIC_LIMIT = "30/minute"
# Workspace business APIs
WRITE_LIMIT = "120/minute"
EXPORT_LIMIT = "10/minute"

AUTH_BLUEPRINTS = ("auth",)
PUBLIC_BLUEPRINTS = ("public_invitations",)
BUSINESS_BLUEPRINTS = (
    "workspaces", "companies", "business_entities", "talep", "hr", "products",
    "invitations", "settings", "system", "users", "onboarding",
)


def init_rate_limits(app, limiter):
    """
    Apply limits to the registered blueprints (per remote IP).

    Disabled when TESTING or RATELIMIT_ENABLED is False.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for name in AUTH_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp:
            limiter.limit(AUTH_LIMIT)(bp)

    for name in PUBLIC_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp:
            limiter.limit(PUBLIC_LIMIT)(bp)

    for name in BUSINESS_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    export_view = app.view_functions.get("business_entities.export_entities")
    if export_view is not None:
        limiter.limit(EXPORT_LIMIT)(export_view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: auth=%s public=%s api=%s export=%s",
        AUTH_LIMIT, PUBLIC_LIMIT, WRITE_LIMIT, EXPORT_LIMIT,
    )
