"""
HSE Corrective Action Platform
Blueprint helpers shared by the API modules.
"""

from flask import request


def _int_arg(name: str, default: int, low: int, high: int | None = None) -> int:
    value = request.args.get(name, default, type=int)
    value = max(value, low)
    return min(value, high) if high is not None else value


def paginate_query(query, default_limit=50, max_limit=500):
    """Apply ``limit``/``offset`` query args to *query*.

    Malformed values fall back to the defaults; ``limit`` is capped at
    *max_limit*. Returns ``(items, total)`` where *total* ignores paging.
    """
    total = query.count()
    limit = _int_arg("limit", default_limit, 1, max_limit)
    offset = _int_arg("offset", 0, 0)
    return query.limit(limit).offset(offset).all(), total
