"""
Subjects and bodies of notification mails (de/en).
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Any

DISCREPANCY_ALERT = "discrepancy-alert"
AUDIT_COMPLETE = "audit-complete"

SUPPORTED_LOCALES = ("de", "en")

_TEXTS: dict[str, dict[str, str]] = {
    "de": {
        "greeting": "Guten Tag,",
        "intro": 'bei der automatischen Qualitätsprüfung des POI "{poi}" wurden Datenabweichungen festgestellt.',
        "complete_intro": 'die Qualitätsprüfung des POI "{poi}" ist abgeschlossen.',
        "score": "Qualitäts-Score",
        "discrepancies": "Festgestellte Abweichungen",
        "field": "Feld",
        "severity": "Schwere",
        "cta": "Details im Dashboard ansehen",
        "outro": "Bitte prüfen Sie die Daten und aktualisieren Sie diese bei Bedarf.",
        "footer": "Diese E-Mail wurde automatisch versendet.",
    },
    "en": {
        "greeting": "Hello,",
        "intro": 'during the automatic quality check of POI "{poi}", data discrepancies were found.',
        "complete_intro": 'the quality check of POI "{poi}" has finished.',
        "score": "Quality score",
        "discrepancies": "Detected discrepancies",
        "field": "Field",
        "severity": "Severity",
        "cta": "View details in the dashboard",
        "outro": "Please review the data and update it if necessary.",
        "footer": "This email was sent automatically.",
    },
}

_SUBJECTS: dict[str, dict[str, str]] = {
    DISCREPANCY_ALERT: {
        "de": "Datenabweichung erkannt: {poi}",
        "en": "Data discrepancy detected: {poi}",
    },
    AUDIT_COMPLETE: {
        "de": "Audit abgeschlossen: {poi}",
        "en": "Audit complete: {poi}",
    },
}


class UnknownTemplateError(ValueError):
    pass


@dataclass(frozen=True)
class RenderedMail:
    subject: str
    html: str
    text: str


def _locale(locale: str | None) -> str:
    normalized = (locale or "de").lower()[:2]
    return normalized if normalized in SUPPORTED_LOCALES else "de"


def _value(value: Any) -> str:
    return "-" if value in (None, "") else str(value)


def render(template: str, payload: dict[str, Any], locale: str | None = None) -> RenderedMail:
    """
    Render ``template`` for ``payload``. All payload values are HTML-escaped.

    Expected payload keys: ``poi`` ({"id", "name"}), ``score``, ``summary``,
    ``audit_url`` and, for discrepancy alerts, ``discrepancies``.
    """

    if template not in _SUBJECTS:
        raise UnknownTemplateError(f"Unknown mail template: {template}")

    lang = _locale(locale)
    texts = _TEXTS[lang]
    poi_name = str((payload.get("poi") or {}).get("name") or "POI")
    subject = _SUBJECTS[template][lang].format(poi=poi_name)

    intro_key = "intro" if template == DISCREPANCY_ALERT else "complete_intro"
    intro = texts[intro_key].format(poi=poi_name)
    score = _value(payload.get("score"))
    audit_url = str(payload.get("audit_url") or "")

    text_lines = [texts["greeting"], "", intro, "", f"{texts['score']}: {score}"]
    html_parts = [
        f"<p>{escape(texts['greeting'])}</p>",
        f"<p>{escape(intro)}</p>",
        f"<p><strong>{escape(texts['score'])}:</strong> {escape(score)}</p>",
    ]

    summary = payload.get("summary")
    if summary:
        text_lines += ["", str(summary)]
        html_parts.append(f"<p>{escape(str(summary))}</p>")

    discrepancies = payload.get("discrepancies") or []
    if template == DISCREPANCY_ALERT and discrepancies:
        text_lines += ["", f"{texts['discrepancies']}:"]
        rows = []
        for item in discrepancies:
            values = (
                _value(item.get("master_value")),
                _value(item.get("website_value")),
                _value(item.get("maps_value")),
            )
            field_name = _value(item.get("field_name"))
            severity = _value(item.get("severity"))
            text_lines.append(
                f"- {field_name} [{severity}]: master={values[0]} | website={values[1]} | maps={values[2]}"
            )
            cells = "".join(f"<td>{escape(cell)}</td>" for cell in (field_name, *values, severity))
            rows.append(f"<tr>{cells}</tr>")
        header = "".join(
            f"<th>{escape(label)}</th>"
            for label in (texts["field"], "Master", "Website", "Maps", texts["severity"])
        )
        html_parts.append(f"<h3>{escape(texts['discrepancies'])}</h3>")
        html_parts.append(f"<table><tr>{header}</tr>{''.join(rows)}</table>")

    if audit_url:
        text_lines += ["", f"{texts['cta']}: {audit_url}"]
        html_parts.append(f'<p><a href="{escape(audit_url, quote=True)}">{escape(texts["cta"])}</a></p>')

    text_lines += ["", texts["outro"], "", texts["footer"]]
    html_parts += [f"<p>{escape(texts['outro'])}</p>", f"<p><small>{escape(texts['footer'])}</small></p>"]

    html = (
        '<!DOCTYPE html><html><head><meta charset="utf-8">'
        f"<title>{escape(subject)}</title></head><body>{''.join(html_parts)}</body></html>"
    )
    return RenderedMail(subject=subject, html=html, text="\n".join(text_lines))
