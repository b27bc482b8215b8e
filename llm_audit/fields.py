"""Catalogue of comparable POI fields."""

from dataclasses import dataclass
from typing import Iterable, List, Tuple


@dataclass(frozen=True)
class FieldSpec:
    name: str
    display_name: str
    data_type: str = "string"
    is_core: bool = True


DEFAULT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("name", "Name"),
    FieldSpec("street", "Street"),
    FieldSpec("postal_code", "Postal code"),
    FieldSpec("city", "City"),
    FieldSpec("phone", "Phone", "phone"),
    FieldSpec("email", "Email", "email"),
    FieldSpec("website", "Website", "url"),
    FieldSpec("opening_hours", "Opening hours", "opening_hours"),
    FieldSpec("latitude", "Latitude", "number", is_core=False),
    FieldSpec("longitude", "Longitude", "number", is_core=False),
)


def field_specs_from_rows(rows: Iterable[object]) -> List[FieldSpec]:
    """Convert DataField rows into FieldSpecs, falling back to the defaults when empty."""
    specs = [
        FieldSpec(
            name=getattr(row, "name"),
            display_name=getattr(row, "display_name"),
            data_type=getattr(row, "data_type"),
            is_core=getattr(row, "is_core"),
        )
        for row in rows
    ]
    return specs or list(DEFAULT_FIELDS)
