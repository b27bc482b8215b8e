"""Structured prompt builder for the three-way POI comparison."""

import json
from typing import Any, Dict, List, Optional, Sequence

from llm_audit.fields import FieldSpec
from llm_audit.schema import AuditComparison

_SCHEMA_JSON = json.dumps(AuditComparison.model_json_schema(), indent=2)

# Kept verbatim in every audit prompt; scores depend on it.
MISSING_DATA_RULE = (
    "Missing data from one source shouldn't severely penalize the score if the "
    "other two sources agree. Treat such a field as partial_match with a field "
    "score of at least 60, never as a mismatch."
)

_SYSTEM_INSTRUCTIONS = f"""\
You are a data quality auditor for tourism points of interest (POIs).
You compare the same POI as described by three sources:
- master: the internal tourism database record
- website: data extracted from the POI's own website
- maps: data from a places/maps listing

For every requested field:
1. Normalize each source value before comparing (phone number formats,
   street abbreviations such as "Str." vs "Strasse", casing, whitespace,
   opening-hours notation, coordinate precision).
2. Decide the match status: match, partial_match, mismatch or missing_data.
3. Give a confidence between 0 and 1 and a field score between 0 and 100.
4. Describe the discrepancy in one sentence when the status is not match.

Scoring bands for the overall score:
- 100: all sources agree on every field
- 80-99: minor differences (formatting, abbreviations)
- 60-79: some fields differ or are missing
- 40-59: significant discrepancies
- 0-39: major conflicts or mostly missing data

{MISSING_DATA_RULE}

STRICT RULES:
- Use ONLY the data provided below.
- Return strictly valid JSON matching the schema defined below.
- Use the exact field names listed under "Fields to compare" as field_name.
- Do NOT include any text outside the JSON object.
- Do NOT wrap the JSON in markdown code fences.
"""

_SECTION_TEMPLATE = """\
## {title}
```json
{data}
```
"""


class AuditPromptBuilder:
    """Builds the chat messages for one comparison completion."""

    def build_messages(
        self,
        poi_name: str,
        master_data: Optional[Dict[str, Any]],
        website_data: Optional[Dict[str, Any]],
        maps_data: Optional[Dict[str, Any]],
        fields: Sequence[FieldSpec],
    ) -> List[Dict[str, str]]:
        """Build system and user messages for the comparison.

        Args:
            poi_name: Display name of the POI under audit.
            master_data: Snapshot from the internal database.
            website_data: Snapshot extracted by the crawler (may be empty).
            maps_data: Snapshot from the places lookup (may be empty).
            fields: Fields the comparator must report on.

        Returns:
            A list of chat messages ready for the adapter.
        """
        field_lines = "\n".join(
            f"- {spec.name} ({spec.display_name}, type: {spec.data_type})" for spec in fields
        )
        sections = "\n".join(
            _SECTION_TEMPLATE.format(
                title=title,
                data=json.dumps(data or {}, indent=2, sort_keys=True, default=str, ensure_ascii=False),
            )
            for title, data in (
                ("Source: master", master_data),
                ("Source: website", website_data),
                ("Source: maps", maps_data),
            )
        )
        user_prompt = (
            f"# POI: {poi_name}\n\n"
            f"## Fields to compare\n{field_lines}\n\n"
            f"{sections}\n"
            f"## Output JSON schema\n```json\n{_SCHEMA_JSON}\n```\n"
        )
        return [
            {"role": "system", "content": _SYSTEM_INSTRUCTIONS},
            {"role": "user", "content": user_prompt},
        ]
