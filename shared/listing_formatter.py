"""
Plain-text rendering of a listing for pasting into a marketplace form.
"""

from __future__ import annotations

from typing import Any, Mapping


def _field(listing: Any, name: str) -> Any:
    if isinstance(listing, Mapping):
        return listing.get(name)
    return getattr(listing, name, None)


def format_price(price: float | int) -> str:
    """Formats a price the way it is typed into a marketplace form ($150, $19.99)."""
    if isinstance(price, float) and price.is_integer():
        price = int(price)
    return f"${price}"


def format_listing_for_clipboard(listing: Any) -> str:
    """
    Builds the clipboard text for a listing.

    Accepts a mapping or an object with ``title``, ``suggested_price`` and
    ``description`` and, optionally, ``condition``, ``brand`` and ``model``.
    The title line carries the price inline, followed by the description and
    a compact product details line, separated by blank lines.
    """
    title = _field(listing, "title")
    price = _field(listing, "suggested_price")
    description = _field(listing, "description")

    parts: list[str] = []

    if title and price is not None:
        parts.append(f"{title} - {format_price(price)}")
    elif title:
        parts.append(title)
    elif price is not None:
        parts.append(format_price(price))

    if description:
        if parts:
            parts.append("")
        parts.append(description)

    details: list[str] = []
    for label, name in (("Condition", "condition"), ("Brand", "brand"), ("Model", "model")):
        value = _field(listing, name)
        if value:
            details.append(f"{label}: {value}")

    if details:
        if parts:
            parts.append("")
        parts.append(" | ".join(details))

    return "\n".join(parts)
