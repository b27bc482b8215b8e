"""Structured output contract of the comparator completion."""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatchStatus(str, Enum):
    MATCH = "match"
    PARTIAL_MATCH = "partial_match"
    MISMATCH = "mismatch"
    MISSING_DATA = "missing_data"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    text = str(value).strip()
    return text or None


class FieldComparison(BaseModel):
    """Comparison of one field across the master, website and maps sources."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    field_name: str = Field(min_length=1)
    master_value: Optional[str] = None
    website_value: Optional[str] = None
    maps_value: Optional[str] = None
    normalized_master: Optional[str] = None
    normalized_website: Optional[str] = None
    normalized_maps: Optional[str] = None
    match_status: MatchStatus
    confidence: float = Field(ge=0.0, le=1.0)
    discrepancy: Optional[str] = None
    field_score: int = Field(ge=0, le=100)

    @field_validator(
        "master_value",
        "website_value",
        "maps_value",
        "normalized_master",
        "normalized_website",
        "normalized_maps",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return _as_text(value)


class AuditComparison(BaseModel):
    """Only accepted shape of the comparator completion."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    overall_score: int = Field(ge=0, le=100)
    field_comparisons: List[FieldComparison]
    summary: str = Field(min_length=1)
    recommendations: List[str] = Field(default_factory=list)


class Discrepancy(BaseModel):
    """A non-matching field as shown in notifications and audit records."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    master_value: Optional[str] = None
    website_value: Optional[str] = None
    maps_value: Optional[str] = None
    match_status: MatchStatus
    field_score: int
    severity: Severity
    recommendation: Optional[str] = None
