"""Error types and the heuristic error classifier.

Remote failures arrive in many shapes: web3 RPC errors carrying a JSON-RPC
``{"code", "message"}`` payload, httpx status errors, bare timeouts, or
wallet errors with an EIP-1193 ``code``. ``classify_error`` reduces all of
them to an :class:`ErrorClass` so retry and window-shrink logic never has
to look at provider-specific details.

The rate-limit predicate is a best-effort heuristic over status codes and
message substrings, not a contract with any particular RPC provider.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

import httpx


class MarketSyncError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(MarketSyncError):
    """Missing or invalid endpoint/address configuration. Never retried."""


class CapabilityUnavailableError(MarketSyncError):
    """The collection does not support an optional read (e.g. enumeration)."""


class ActionRejected(MarketSyncError):
    """A mutating action refused by a local pre-check before submission."""


class ErrorClass(str, Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


RATE_LIMIT_CODES = frozenset({429, -32005})
RATE_LIMIT_MARKERS = ("rate limit", "too many", "quota", "exceed")

USER_REJECTED_CODES = frozenset({4001, "ACTION_REJECTED"})
USER_REJECTED_MARKER = "user rejected"


# ---------------------------------------------------------------------------
# Envelope extraction
# ---------------------------------------------------------------------------


def _payload(err: BaseException) -> dict[str, Any]:
    """Best-effort structured payload attached to an exception."""
    rpc_response = getattr(err, "rpc_response", None)
    if isinstance(rpc_response, dict):
        nested = rpc_response.get("error")
        if isinstance(nested, dict):
            return nested
    nested = getattr(err, "error", None)
    if isinstance(nested, dict):
        return nested
    # web3 (pre-v7) raised ValueError({"code": ..., "message": ...}).
    if err.args and isinstance(err.args[0], dict):
        return err.args[0]
    return {}


def error_code(err: BaseException) -> Optional[Any]:
    """Return the first status/code found on ``err`` or its payload."""
    for attr in ("code", "status", "status_code"):
        value = getattr(err, attr, None)
        if value is not None and not callable(value):
            return value
    if isinstance(err, httpx.HTTPStatusError):
        return err.response.status_code
    response = getattr(err, "response", None)
    status = getattr(response, "status_code", None)
    if status is not None:
        return status
    return _payload(err).get("code")


def error_message(err: BaseException) -> str:
    """Lower-cased message text from ``err`` and its payload."""
    parts = []
    message = getattr(err, "message", None)
    if isinstance(message, str):
        parts.append(message)
    payload_message = _payload(err).get("message")
    if isinstance(payload_message, str):
        parts.append(payload_message)
    parts.append(str(err))
    return " ".join(parts).lower()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def is_rate_limit(err: BaseException) -> bool:
    """Heuristic: does ``err`` look like provider throttling?"""
    code = error_code(err)
    if isinstance(code, (int, str)) and code in RATE_LIMIT_CODES:
        return True
    message = error_message(err)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_user_rejection(err: BaseException) -> bool:
    """True when the wallet reports that the user declined the request."""
    code = error_code(err)
    if isinstance(code, (int, str)) and code in USER_REJECTED_CODES:
        return True
    return USER_REJECTED_MARKER in error_message(err)


def classify_error(err: BaseException) -> ErrorClass:
    if isinstance(err, (ConfigurationError, ActionRejected)):
        return ErrorClass.FATAL
    if is_rate_limit(err):
        return ErrorClass.RATE_LIMITED
    if isinstance(err, (asyncio.TimeoutError, TimeoutError, ConnectionError, httpx.TransportError)):
        return ErrorClass.TRANSIENT
    if isinstance(err, httpx.HTTPStatusError) and err.response.status_code >= 500:
        return ErrorClass.TRANSIENT
    if isinstance(err, (CapabilityUnavailableError, NotImplementedError)):
        return ErrorClass.FATAL
    return ErrorClass.TRANSIENT
