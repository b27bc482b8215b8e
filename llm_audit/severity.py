"""Severity classification for field discrepancies."""

from typing import List

from llm_audit.schema import AuditComparison, Discrepancy, MatchStatus, Severity

HIGH_SEVERITY_BELOW = 50
MEDIUM_SEVERITY_BELOW = 75


def severity_for_score(field_score: int) -> Severity:
    """Map a field score (0-100) to a severity.

    Args:
        field_score: Score the comparator gave the field.

    Returns:
        ``HIGH`` below 50, ``MEDIUM`` from 50 to 74, ``LOW`` from 75.
    """
    if field_score < HIGH_SEVERITY_BELOW:
        return Severity.HIGH
    if field_score < MEDIUM_SEVERITY_BELOW:
        return Severity.MEDIUM
    return Severity.LOW


def discrepancies_from(comparison: AuditComparison) -> List[Discrepancy]:
    """Derive the discrepancy list from every field that is not a full match."""
    return [
        Discrepancy(
            field_name=field.field_name,
            master_value=field.master_value,
            website_value=field.website_value,
            maps_value=field.maps_value,
            match_status=field.match_status,
            field_score=field.field_score,
            severity=severity_for_score(field.field_score),
            recommendation=field.discrepancy,
        )
        for field in comparison.field_comparisons
        if field.match_status != MatchStatus.MATCH
    ]
