"""
Network policy for sandboxed commands.

There is no network namespace here. ``BLOCKED`` points every proxy variable
that common tools honour at a closed local port, so well-behaved HTTP clients
fail fast. Anything that opens raw sockets is unaffected.
"""

from __future__ import annotations

from enum import Enum

# Discard port on loopback, nothing listens there.
BLACKHOLE_PROXY = "http://127.0.0.1:9"

_PROXY_VARIABLES = (
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "FTP_PROXY",
    "ALL_PROXY",
    "http_proxy",
    "https_proxy",
    "ftp_proxy",
    "all_proxy",
)

_BYPASS_VARIABLES = ("NO_PROXY", "no_proxy")


class NetworkMode(Enum):
    """Network access control mode."""

    ALLOWED = "allowed"
    """Full network access allowed."""

    BLOCKED = "blocked"
    """Proxy-based best-effort block."""


def proxy_env(mode: NetworkMode, env: dict[str, str]) -> dict[str, str]:
    """
    Apply the network mode to an environment mapping.

    Returns a new dict; ``env`` is not modified.
    """
    result = dict(env)
    if mode is NetworkMode.BLOCKED:
        for name in _BYPASS_VARIABLES:
            result.pop(name, None)
        for name in _PROXY_VARIABLES:
            result[name] = BLACKHOLE_PROXY
    return result
