"""
Approval workflow for applications (approval requests).

An application walks the ordered steps of its approval route.  ``level`` is
1-based and points at the step whose approver must act next.  ``approved``
and ``rejected`` are terminal.  Functions here are pure: they take the
current application record and return the fields to write, leaving
persistence to the data service.  Whether the acting user is the current
approver is checked by the caller.
"""

from __future__ import annotations

import datetime as _dt
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidTransitionError, ValidationError, WorkflowConfigurationError


class ApplicationStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value})


def route_steps(route: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not route:
        return []
    return list((route.get("routeData") or {}).get("steps") or [])


def _approver_at(steps: List[Dict[str, Any]], level: int) -> Optional[str]:
    if 1 <= level <= len(steps):
        return steps[level - 1].get("approverId")
    return None


def start_application(route: Optional[Dict[str, Any]], now: Optional[_dt.datetime] = None) -> Dict[str, Any]:
    """Initial state for a new application on ``route``.

    Raises WorkflowConfigurationError when the route is missing, has no steps
    or its first step names no approver.
    """
    steps = route_steps(route)
    first_approver = _approver_at(steps, 1)
    if not first_approver:
        raise WorkflowConfigurationError("Approval route is misconfigured: it has no approver steps.")
    return {
        "status": ApplicationStatus.PENDING_APPROVAL.value,
        "currentLevel": 1,
        "approverId": first_approver,
        "submittedAt": now or _dt.datetime.utcnow(),
    }


def _ensure_pending(application: Dict[str, Any]) -> None:
    status = application.get("status")
    if status != ApplicationStatus.PENDING_APPROVAL.value:
        raise InvalidTransitionError(f"Application is already {status}.")


def approve(
    application: Dict[str, Any], route: Optional[Dict[str, Any]], now: Optional[_dt.datetime] = None
) -> Dict[str, Any]:
    """Advance to the next step, or finish the route."""
    _ensure_pending(application)
    steps = route_steps(route)
    if not steps:
        raise WorkflowConfigurationError("Approval route not found or has no steps.")
    level = int(application.get("currentLevel") or 1)
    if level < len(steps):
        return {"currentLevel": level + 1, "approverId": _approver_at(steps, level + 1)}
    return {
        "status": ApplicationStatus.APPROVED.value,
        "approverId": None,
        "approvedAt": now or _dt.datetime.utcnow(),
    }


def reject(application: Dict[str, Any], reason: str, now: Optional[_dt.datetime] = None) -> Dict[str, Any]:
    _ensure_pending(application)
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required.", fields={"reason": "This field is required."})
    return {
        "status": ApplicationStatus.REJECTED.value,
        "approverId": None,
        "rejectionReason": reason.strip(),
        "rejectedAt": now or _dt.datetime.utcnow(),
    }
