"""
Per-blueprint rate limits (Flask-Limiter).

The Limiter in ``hse_app/__init__.py`` has no default limits. Writes
(status changes, aborts, creation, job triggers and toggles) get
RATELIMIT_WRITE_LIMIT, reads get RATELIMIT_READ_LIMIT, both keyed by
remote address. Health probes are exempt. Nothing is applied when TESTING.
"""

import logging

logger = logging.getLogger(__name__)

LIMITED_BLUEPRINTS = ("corrective_action_bp", "notification_bp")
EXEMPT_BLUEPRINTS = ("health_bp",)


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        logger.debug("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config["RATELIMIT_WRITE_LIMIT"]
    read_limit = app.config["RATELIMIT_READ_LIMIT"]
    for name in LIMITED_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp is None:
            continue
        limiter.limit(write_limit, methods=["POST", "PATCH"])(bp)
        limiter.limit(read_limit, methods=["GET"])(bp)
    for name in EXEMPT_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.exempt(bp)

    logger.info("Rate limits: write=%s read=%s", write_limit, read_limit)
