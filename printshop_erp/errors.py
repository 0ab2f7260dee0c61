"""
Error types shared across printshop-erp.

Store and AI failures bubble up to the controller layer, which turns them into
user-facing messages.  Connectivity problems are told apart from ordinary
failures by the wording of the underlying error, because neither the database
driver nor the storage client reports them with a single exception type.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

_UNAVAILABLE_PATTERNS = (
    re.compile(r"fetch failed", re.IGNORECASE),
    re.compile(r"failed to fetch", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
)

NETWORK_MESSAGE = "Could not reach the server. Please check your network connection."


def _error_message(error: Any) -> Optional[str]:
    if error is None:
        return None
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return error.get("message") or error.get("details") or error.get("error_description")
    for attr in ("message", "details", "error_description"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value
    return str(error) or None


def is_unavailable_error(error: Any) -> bool:
    """Return True if ``error`` looks like a connectivity failure.

    Accepts an exception, a plain message or an error payload dict.  Only the
    message text is inspected: ``network``, ``failed to fetch`` and
    ``fetch failed`` match, case-insensitively.
    """
    message = _error_message(error)
    if not message:
        return False
    return any(pattern.search(message) for pattern in _UNAVAILABLE_PATTERNS)


class PrintshopError(Exception):
    """Base class for application errors."""


class StoreError(PrintshopError):
    """A call against the database or file storage failed."""

    def __init__(self, message: str, *, unavailable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.unavailable = unavailable

    @classmethod
    def from_exception(cls, action: str, exc: BaseException) -> "StoreError":
        return cls(f"{action} failed: {exc}", unavailable=is_unavailable_error(exc))


class NotFoundError(PrintshopError):
    pass


class ConfigurationError(PrintshopError):
    """Missing credentials or misconfigured master data; never retried."""


class WorkflowConfigurationError(ConfigurationError):
    pass


class ValidationError(PrintshopError):
    """Input rejected before it reaches the store."""

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields or {}


class InvalidTransitionError(PrintshopError):
    pass


class PermissionDeniedError(PrintshopError):
    pass


class AIError(PrintshopError):
    pass


class AIDisabledError(AIError):
    pass


class AIUnavailableError(AIError):
    pass


class AICancelledError(AIError):
    pass


class AIResponseParseError(AIError, ValueError):
    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


def require_fields(record: Dict[str, Any], *names: str) -> None:
    """Raise ValidationError listing every required field that is blank."""
    missing = {}
    for name in names:
        value = record.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing[name] = "This field is required."
    if missing:
        raise ValidationError("Required fields are missing.", fields=missing)
