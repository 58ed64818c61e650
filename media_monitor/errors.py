"""Error taxonomy for the media server monitor.

All of these are recovered locally (retry or reconnection loop). None of them
escape the supervisors; the only visible effect of an error is a deduplicated alert.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for every recoverable monitoring failure."""


class ConnectError(MonitorError):
    """Handshake or transport failure while connecting to a host."""


class FailoverTimeoutError(MonitorError, TimeoutError):
    """The failover timeout settled before the connect (or probe) did."""


class ProbeError(MonitorError):
    """Liveness ping failed, timed out, or the side channel closed before a pong."""


class AuthError(ConnectError):
    """The call-control server rejected the authentication handshake."""


def describe_error(error: BaseException, *secrets: str | None) -> str:
    """``"Type: message"`` with every non-empty secret masked.

    httpx puts the request URL into its error messages, and both the webhook URL and
    the Telegram bot URL carry credentials.
    """
    text = f"{type(error).__name__}: {error}"
    for secret in secrets:
        if secret:
            text = text.replace(secret, "<redacted>")
    return text
