"""Client configuration for pyturntable."""

from __future__ import annotations

import dataclasses
import os
import random
import time
from typing import Any

from pyturntable._constants import DEFAULT_API_BASE_URL
from pyturntable.exceptions import TurntableArgumentError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_timeout(value: str) -> float | None:
    normalized = value.strip().lower()
    if normalized in {"", "none", "off", "0"}:
        return None
    return float(normalized)


def _default_client_id() -> str:
    return f"{int(time.time())}-{random.random()}"


@dataclasses.dataclass(frozen=True)
class TurntableConfig:
    """Client configuration.

    Parameters
    ----------
    user_id : str
        Id of the account the bot acts as.
    auth : str
        Auth token of that account (``userauth`` on the wire).
    client_id : str
        Identifier of this client instance, sent with every command.
    room : str or None
        Room to enter on :meth:`TurntableClient.start`.
    url : str or None
        Chat server url to connect to when no room is configured.
    timeout : float or None
        Seconds before an unanswered command fails with ``timed out``.
        ``None`` waits forever.
    connect_timeout : float
        Seconds to wait for the server to request authentication after
        the socket opens.
    reconnect : bool
        Re-establish the session after an unexpected disconnect.
    reconnect_wait : float
        Seconds between reconnect attempts.
    keepalive_interval : float
        Seconds between presence refreshes while connected.
    api_base_url : str
        Base url for the HTTP-only commands and chat server lookups.
    """

    user_id: str
    auth: str
    client_id: str = dataclasses.field(default_factory=_default_client_id)
    room: str | None = None
    url: str | None = None
    timeout: float | None = 10.0
    connect_timeout: float = 30.0
    reconnect: bool = False
    reconnect_wait: float = 5.0
    keepalive_interval: float = 10.0
    api_base_url: str = DEFAULT_API_BASE_URL

    def __post_init__(self) -> None:
        if not self.user_id:
            raise TurntableArgumentError("user_id is required")
        if not self.auth:
            raise TurntableArgumentError("auth is required")
        if self.timeout is not None and self.timeout <= 0:
            raise TurntableArgumentError(f"timeout must be positive or None, got {self.timeout!r}")
        for name in ("connect_timeout", "reconnect_wait", "keepalive_interval"):
            value = getattr(self, name)
            if value <= 0:
                raise TurntableArgumentError(f"{name} must be positive, got {value!r}")
        if not self.api_base_url.endswith("/"):
            object.__setattr__(self, "api_base_url", self.api_base_url + "/")

    @classmethod
    def from_env(cls, **overrides: Any) -> TurntableConfig:
        """Create configuration from environment variables.

        Reads ``TURNTABLE_USER_ID`` and ``TURNTABLE_AUTH`` plus the optional
        ``TURNTABLE_CLIENT_ID``, ``TURNTABLE_ROOM``, ``TURNTABLE_URL``,
        ``TURNTABLE_TIMEOUT``, ``TURNTABLE_RECONNECT``,
        ``TURNTABLE_RECONNECT_WAIT`` and ``TURNTABLE_API_BASE_URL``.
        Explicit keyword arguments override environment values.

        Raises
        ------
        TurntableArgumentError
            If the credentials are missing or a value is invalid.
        """
        env: dict[str, Any] = {}

        user_id = os.environ.get("TURNTABLE_USER_ID")
        if user_id:
            env["user_id"] = user_id
        auth = os.environ.get("TURNTABLE_AUTH")
        if auth:
            env["auth"] = auth

        for var, key in (
            ("TURNTABLE_CLIENT_ID", "client_id"),
            ("TURNTABLE_ROOM", "room"),
            ("TURNTABLE_URL", "url"),
            ("TURNTABLE_API_BASE_URL", "api_base_url"),
        ):
            value = os.environ.get(var)
            if value:
                env[key] = value

        try:
            timeout = os.environ.get("TURNTABLE_TIMEOUT")
            if timeout is not None:
                env["timeout"] = _env_timeout(timeout)
            reconnect_wait = os.environ.get("TURNTABLE_RECONNECT_WAIT")
            if reconnect_wait:
                env["reconnect_wait"] = float(reconnect_wait)
        except ValueError as exc:
            raise TurntableArgumentError(f"Invalid numeric TURNTABLE_* value: {exc}") from exc

        env["reconnect"] = _env_bool(os.environ.get("TURNTABLE_RECONNECT"), False)

        env.update(overrides)
        if "user_id" not in env or "auth" not in env:
            raise TurntableArgumentError("TURNTABLE_USER_ID and TURNTABLE_AUTH must be set")
        return cls(**env)
