"""Estimate totals and postal label rendering."""

from __future__ import annotations

import math
from html import escape
from typing import Any, Dict, Iterable, List, Optional

DEFAULT_TAX_RATE = 0.1


def round_half_up(value: float) -> int:
    # Matches the rounding used on printed estimates: .5 always goes up.
    return int(math.floor(value + 0.5))


def calc_totals(items: Optional[Iterable[Dict[str, Any]]], tax_inclusive: bool = False) -> Dict[str, Any]:
    """Normalise line items and derive the estimate totals from them.

    Each returned item carries ``subtotal``, ``taxAmount`` and ``total``.  The
    result is a pure function of ``items`` and ``tax_inclusive``: feeding the
    normalised items back in yields the same numbers.
    """
    normalized: List[Dict[str, Any]] = []
    subtotal = 0.0
    tax_total = 0
    for item in items or []:
        sub = float(item.get("qty") or 0) * float(item.get("unitPrice") or 0)
        rate = item.get("taxRate")
        rate = DEFAULT_TAX_RATE if rate is None else float(rate)
        if tax_inclusive:
            tax = round_half_up(sub - sub / (1 + rate))
            total = sub
        else:
            tax = round_half_up(sub * rate)
            total = sub + tax
        normalized.append({**item, "subtotal": sub, "taxAmount": tax, "total": total})
        subtotal += sub
        tax_total += tax

    grand_total = round_half_up(subtotal) if tax_inclusive else round_half_up(subtotal + tax_total)
    return {
        "items": normalized,
        "subtotal": subtotal,
        "taxTotal": tax_total,
        "grandTotal": grand_total,
    }


def render_postal_label_svg(to_name: str, to_company: Optional[str] = None) -> str:
    return (
        '<svg width="300" height="150" xmlns="http://www.w3.org/2000/svg">'
        '<rect width="300" height="150" fill="white"/>'
        f'<text x="10" y="40" font-size="20">{escape(to_company or "")}</text>'
        f'<text x="10" y="80" font-size="24" font-weight="bold">{escape(to_name)}様</text>'
        "</svg>"
    )
