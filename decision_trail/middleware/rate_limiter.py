"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in decision_trail/__init__.py with no
default limits; this module applies limits per route category.

Usage:
    from decision_trail.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Public portal (share tokens): PORTAL_RATE_LIMIT (token guessing)
        - Decision API:                 60/minute
        - Health check:                 exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    portal_limit = app.config.get("PORTAL_RATE_LIMIT", "60 per minute")
    bp = app.blueprints.get("portal")
    if bp:
        limiter.limit(portal_limit)(bp)

    bp = app.blueprints.get("decision")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: portal=%s, decision=%s", portal_limit, WRITE_LIMIT
    )
