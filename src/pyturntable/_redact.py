"""Helpers for safe debug logging.

Every chat command carries the user's ``userauth`` token, and the HTTP-only
commands put the same token in a query string. These helpers hide such
values before messages and request urls reach DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "<redacted>"

_SENSITIVE_KEYS: frozenset[str] = frozenset({"password", "token", "email", "cookie", "authorization"})
_MAX_DEPTH = 20


def is_sensitive(key: object) -> bool:
    """``auth``, ``userauth`` and any other ``*auth`` key, plus known secrets."""
    name = str(key).lower()
    return name.endswith("auth") or name in _SENSITIVE_KEYS


def _truncate(value: str, max_string: int) -> str:
    if len(value) <= max_string:
        return value
    return f"{value[:max_string]}…<truncated {len(value) - max_string} chars>"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets hidden and long strings cut."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if isinstance(value, str):
        return _truncate(value, max_string)
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if is_sensitive(key) else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)


def redact_url(url: str, params: Mapping[str, Any] | None = None) -> str:
    """Render *url* with *params* appended and secret query values hidden."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((str(key), str(value)) for key, value in (params or {}).items())
    safe_query = [(key, REDACTED if is_sensitive(key) else value) for key, value in query]
    return urlunsplit(parts._replace(query=urlencode(safe_query, safe="<>")))
