"""
Build the website snapshot of a POI from schema.org data found while crawling.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

BUSINESS_TYPES = {
    "LocalBusiness",
    "Restaurant",
    "Hotel",
    "TouristAttraction",
    "Place",
    "LodgingBusiness",
    "FoodEstablishment",
    "Organization",
}


def _types_of(item: dict[str, Any]) -> set[str]:
    raw = item.get("@type")
    if isinstance(raw, str):
        return {raw}
    if isinstance(raw, list):
        return {value for value in raw if isinstance(value, str)}
    return set()


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        parts = [part for part in (_text(item) for item in value) if part]
        return ", ".join(parts) or None
    if isinstance(value, dict):
        return _text(value.get("name") or value.get("@value"))
    text = str(value).strip()
    return text or None


def _float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opening_hours(item: dict[str, Any]) -> str | None:
    simple = _text(item.get("openingHours"))
    if simple:
        return simple

    specs = item.get("openingHoursSpecification")
    if isinstance(specs, dict):
        specs = [specs]
    if not isinstance(specs, list):
        return None

    lines: list[str] = []
    for spec in specs:
        if not isinstance(spec, dict):
            continue
        days = spec.get("dayOfWeek")
        if isinstance(days, str):
            days = [days]
        day_names = [str(day).rsplit("/", 1)[-1] for day in days or []]
        opens, closes = spec.get("opens"), spec.get("closes")
        if day_names and opens and closes:
            lines.append(f"{','.join(day_names)} {opens}-{closes}")
    return "; ".join(lines) or None


def _from_item(item: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": _text(item.get("name")),
        "phone": _text(item.get("telephone")),
        "email": _text(item.get("email")),
        "website": _text(item.get("url")),
        "description": _text(item.get("description")),
        "price_range": _text(item.get("priceRange")),
        "cuisine": _text(item.get("servesCuisine")),
        "opening_hours": _opening_hours(item),
        "payment_accepted": _text(item.get("paymentAccepted")),
    }

    address = item.get("address")
    if isinstance(address, dict):
        data.update(
            {
                "street": _text(address.get("streetAddress")),
                "postal_code": _text(address.get("postalCode")),
                "city": _text(address.get("addressLocality")),
                "region": _text(address.get("addressRegion")),
                "country": _text(address.get("addressCountry")),
            }
        )
    elif isinstance(address, str):
        data["address"] = _text(address)

    geo = item.get("geo")
    if isinstance(geo, dict):
        data["latitude"] = _float(geo.get("latitude"))
        data["longitude"] = _float(geo.get("longitude"))

    if isinstance(data.get("email"), str):
        data["email"] = data["email"].removeprefix("mailto:")
    return {key: value for key, value in data.items() if value is not None}


def extract_website_data(
    json_ld_items: Iterable[dict[str, Any]],
    *,
    phones: Iterable[str] = (),
    emails: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Merge business data from all JSON-LD items of a crawl.

    Items are visited in crawl order and the first non-empty value per field
    wins. Anchor-derived phones and emails fill gaps left by structured data.
    """

    merged: dict[str, Any] = {}
    for item in json_ld_items:
        if not _types_of(item) & BUSINESS_TYPES:
            continue
        for key, value in _from_item(item).items():
            merged.setdefault(key, value)

    first_phone = next((phone for phone in phones if phone), None)
    if first_phone:
        merged.setdefault("phone", first_phone)
    first_email = next((email for email in emails if email), None)
    if first_email:
        merged.setdefault("email", first_email)
    return merged
