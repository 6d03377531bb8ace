"""
Bardawil Lake Licensing Portal
Blueprint registry.
"""

from flask import request


def request_filters(*names):
    """Collect the named query-string parameters that were actually sent."""
    return {name: request.args.get(name) for name in names if request.args.get(name) not in (None, "")}


def expected_version(data=None):
    """Client's view of ``Application.version``: ``If-Match`` header or ``version`` body field.

    Returns None when the client sent neither; a malformed value is ignored.
    """
    raw = request.headers.get("If-Match")
    if raw:
        raw = raw.strip().strip('"')
    elif data:
        raw = data.get("version")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
