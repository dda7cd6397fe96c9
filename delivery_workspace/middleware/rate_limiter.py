"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in delivery_workspace/__init__.py with no
default limits; this module applies granular limits per route category.

Usage:
    from delivery_workspace.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_HEAVY_BLUEPRINTS = (
    "clients", "contacts", "projects", "phases", "sets", "leads",
    "discussions", "notes", "notifications",
)
UPLOAD_BLUEPRINTS = ("documents",)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Delivery / CRM:   RATELIMIT_WRITE (default 120/minute)
        - Documents:        RATELIMIT_UPLOAD (default 30/minute)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("RATELIMIT_WRITE", "120/minute")
    upload_limit = app.config.get("RATELIMIT_UPLOAD", "30/minute")

    for bp_name in WRITE_HEAVY_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit)(bp)

    for bp_name in UPLOAD_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(upload_limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: %s, upload: %s", write_limit, upload_limit)
