"""
Per-blueprint request limits (Flask-Limiter).

The Limiter itself lives in civicworks/__init__.py without default limits;
here each blueprint is bound to the config key holding its limit string.
Health probes are exempt and nothing is limited when TESTING is set.
"""

import logging

logger = logging.getLogger(__name__)

# blueprint name → config key of its limit
BLUEPRINT_LIMITS = {
    "incidents": "RATELIMIT_COMMANDS",
    "material_requests": "RATELIMIT_COMMANDS",
    "purchase_requests": "RATELIMIT_COMMANDS",
    "maintenance": "RATELIMIT_COMMANDS",
    "inventory": "RATELIMIT_INVENTORY",
}

_FALLBACKS = {
    "RATELIMIT_COMMANDS": "120/minute",
    "RATELIMIT_INVENTORY": "300/minute",
}


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        logger.info("Rate limits skipped (TESTING)")
        return

    applied = {}
    for bp_name, key in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp is None:
            continue
        limit = app.config.get(key) or _FALLBACKS[key]
        limiter.limit(limit)(bp)
        applied[bp_name] = limit

    health = app.blueprints.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits applied: %s", applied)
