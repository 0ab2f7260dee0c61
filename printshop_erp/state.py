"""
Client-side application state.

``AppState`` keeps one list per entity kind.  ``reload_all`` fetches every
slice; ``invalidate`` marks one slice stale so the next read refetches it.
The ``apply_*`` helpers patch a slice in place after a successful write, so
callers do not have to reload everything after each change.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .data_service import DataService
from .errors import NETWORK_MESSAGE, StoreError, is_unavailable_error

logger = logging.getLogger(__name__)

# Kinds loaded by reload_all, in load order.
SLICES = (
    "jobs",
    "customers",
    "leads",
    "estimates",
    "invoices",
    "purchase_orders",
    "inventory_items",
    "projects",
    "application_codes",
    "approval_routes",
    "applications",
    "inbox_items",
    "users",
    "journal_entries",
    "account_items",
    "payment_recipients",
    "allocation_divisions",
    "departments",
    "titles",
    "bug_reports",
)


def user_message(error: BaseException) -> str:
    if (isinstance(error, StoreError) and error.unavailable) or is_unavailable_error(error):
        return NETWORK_MESSAGE
    return f"Could not load data: {error}"


class AppState:
    def __init__(self, data: DataService) -> None:
        self.data = data
        self.user: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self._slices: Dict[str, List[Dict[str, Any]]] = {}
        self._stale = set(SLICES)
        self._loaders: Dict[str, Callable[[], List[Dict[str, Any]]]] = {
            "invoices": data.list_invoices,
            "projects": data.list_projects,
            "applications": lambda: data.list_applications(self.user),
            "users": data.list_users,
        }

    def _load(self, kind: str) -> List[Dict[str, Any]]:
        loader = self._loaders.get(kind)
        return loader() if loader else self.data.list(kind)

    def reload_all(self, user: Optional[Dict[str, Any]] = None) -> bool:
        """Refetch every slice.  On failure the previous slices are kept and ``error`` is set."""
        if user is not None:
            self.user = user
        try:
            fresh = {kind: self._load(kind) for kind in SLICES}
        except StoreError as exc:
            logger.error("Reloading application state failed: %s", exc)
            self.error = user_message(exc)
            return False
        self._slices = fresh
        self._stale.clear()
        self.error = None
        return True

    def invalidate(self, kind: str) -> None:
        self._stale.add(kind)

    def get(self, kind: str) -> List[Dict[str, Any]]:
        if kind in self._stale:
            self._slices[kind] = self._load(kind)
            self._stale.discard(kind)
        return self._slices.get(kind, [])

    def apply_created(self, kind: str, record: Dict[str, Any]) -> None:
        self._slices[kind] = [record] + self._slices.get(kind, [])

    def apply_updated(self, kind: str, record: Dict[str, Any]) -> None:
        self._slices[kind] = [
            {**existing, **record} if existing.get("id") == record.get("id") else existing
            for existing in self._slices.get(kind, [])
        ]

    def apply_removed(self, kind: str, record_id: Any) -> None:
        self._slices[kind] = [r for r in self._slices.get(kind, []) if r.get("id") != record_id]
