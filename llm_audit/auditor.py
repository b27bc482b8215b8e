"""Three-way POI comparison with persistence of its results.

Loads the POI snapshots, asks the LLM for a structured comparison, then
upserts per-field values, writes an immutable AuditRecord and updates the
POI's cached score and status.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import metrics
from app.cache import TTLCache
from app.logging_utils import log_event
from app.pipeline.results import CallResult
from costs.ledger import CostLedger
from db.models.audit import AuditRecordStatus
from db.models.poi import POIAuditStatus
from db.repositories.audit_repository import AuditRepository
from db.repositories.poi_repository import POIRepository
from llm_audit.adapter import BaseLLMAdapter, LLMCompletion
from llm_audit.fields import FieldSpec, field_specs_from_rows
from llm_audit.prompt_builder import AuditPromptBuilder
from llm_audit.retry import generate_with_retry
from llm_audit.schema import AuditComparison, Discrepancy
from llm_audit.severity import discrepancies_from

logger = logging.getLogger(__name__)

_FIELDS_CACHE_KEY = "data_fields"


@dataclass(frozen=True)
class AuditOutcome:
    poi_id: uuid.UUID
    audit_record_id: uuid.UUID
    overall_score: int
    poi_status: str
    summary: str
    duration_ms: int
    discrepancies: List[Discrepancy] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


class AIAuditor:
    """Runs one comparison per call and persists its side effects.

    Token usage is billed for every completion the provider returned a
    usage object for, including completions that later failed validation.
    Nothing is estimated when the provider returned no usage.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        adapter: BaseLLMAdapter,
        cost_ledger: Optional[CostLedger] = None,
        field_cache: Optional[TTLCache[List[FieldSpec]]] = None,
        prompt_builder: Optional[AuditPromptBuilder] = None,
        pass_threshold: int = 80,
        max_format_retries: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._adapter = adapter
        self._cost_ledger = cost_ledger
        self._field_cache = field_cache or TTLCache(ttl_seconds=60.0)
        self._prompt_builder = prompt_builder or AuditPromptBuilder()
        self._pass_threshold = pass_threshold
        self._max_format_retries = max_format_retries
        self._clock = clock

    def audit(
        self,
        poi_id: uuid.UUID,
        *,
        website_data: Optional[Dict[str, Any]] = None,
        maps_data: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> CallResult[AuditOutcome]:
        """Compare the POI's three snapshots and persist the result.

        Args:
            poi_id: POI under audit.
            website_data: Website snapshot; read from the POI when omitted.
            maps_data: Maps snapshot; read from the POI when omitted.
            job_id: Queue job id stored on the AuditRecord.

        Returns:
            The outcome, or the failure reported by the LLM layer. A missing
            POI is a TERMINAL failure.
        """
        with self._session_factory() as db:
            poi = POIRepository(db).get(poi_id)
            if poi is None:
                return CallResult.terminal("poi_not_found", detail=str(poi_id))
            poi_name = poi.name
            master = poi.master_snapshot()
            website = website_data if website_data is not None else (poi.website_data or {})
            maps = maps_data if maps_data is not None else (poi.maps_data or {})

        fields = self._field_cache.get_or_load(_FIELDS_CACHE_KEY, self._load_fields)
        messages = self._prompt_builder.build_messages(poi_name, master, website, maps, fields)

        started = self._clock()
        result = generate_with_retry(
            self._adapter,
            messages,
            max_retries=self._max_format_retries,
            on_completion=lambda completion: self._bill(completion, poi_id),
        )
        duration_ms = int((self._clock() - started) * 1000)
        if not result.ok:
            log_event(
                logger,
                logging.WARNING,
                "audit_comparison_failed",
                poi_id=poi_id,
                failure=result.failure,
                error=result.error,
                detail=result.detail,
            )
            return result  # type: ignore[return-value]

        comparison = result.unwrap()
        try:
            outcome = self._persist(poi_id, comparison, duration_ms=duration_ms, job_id=job_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to persist audit result poi_id=%s", poi_id)
            return CallResult.transient("persist_failed", detail=str(exc))

        metrics.AUDIT_DURATION_SECONDS.observe(duration_ms / 1000.0)
        metrics.AUDIT_SCORE.observe(outcome.overall_score)
        metrics.AUDITS_COMPLETED_TOTAL.labels(status=outcome.poi_status).inc()
        log_event(
            logger,
            logging.INFO,
            "audit_completed",
            poi_id=poi_id,
            score=outcome.overall_score,
            status=outcome.poi_status,
            discrepancies=len(outcome.discrepancies),
            duration_ms=duration_ms,
        )
        return CallResult.success(outcome)

    def record_failure(
        self,
        poi_id: uuid.UUID,
        error: str,
        *,
        job_id: Optional[str] = None,
    ) -> None:
        """Write the FAILED AuditRecord (score 0) for a terminally failed audit."""
        with self._session_factory() as db, db.begin():
            if POIRepository(db).get(poi_id) is None:
                return
            AuditRepository(db).create_failed_record(
                poi_id=poi_id,
                error_message=error,
                job_id=job_id,
            )
        metrics.AUDITS_COMPLETED_TOTAL.labels(status=POIAuditStatus.FAILED).inc()

    def _persist(
        self,
        poi_id: uuid.UUID,
        comparison: AuditComparison,
        *,
        duration_ms: int,
        job_id: Optional[str],
    ) -> AuditOutcome:
        discrepancies = discrepancies_from(comparison)
        poi_status = (
            POIAuditStatus.COMPLETED
            if comparison.overall_score >= self._pass_threshold
            else POIAuditStatus.REVIEW_REQUIRED
        )

        with self._session_factory() as db, db.begin():
            audits = AuditRepository(db)
            pois = POIRepository(db)

            for item in comparison.field_comparisons:
                audits.upsert_extracted_value(
                    poi_id=poi_id,
                    field_name=item.field_name,
                    values={
                        "master_value": item.master_value,
                        "website_value": item.website_value,
                        "maps_value": item.maps_value,
                        "normalized_master": item.normalized_master,
                        "normalized_website": item.normalized_website,
                        "normalized_maps": item.normalized_maps,
                        "match_status": item.match_status.value,
                        "confidence": item.confidence,
                        "discrepancy": item.discrepancy,
                        "field_score": item.field_score,
                    },
                )

            record = audits.create_record(
                poi_id=poi_id,
                status=AuditRecordStatus.COMPLETED,
                overall_score=comparison.overall_score,
                field_scores={item.field_name: item.field_score for item in comparison.field_comparisons},
                discrepancies=[item.model_dump(mode="json") for item in discrepancies],
                summary=comparison.summary,
                recommendations=list(comparison.recommendations),
                model=self._adapter.model,
                processing_ms=duration_ms,
                job_id=job_id,
            )

            poi = pois.get(poi_id)
            if poi is not None:
                pois.record_audit_result(poi, score=comparison.overall_score, status=poi_status)
            record_id = record.id

        return AuditOutcome(
            poi_id=poi_id,
            audit_record_id=record_id,
            overall_score=comparison.overall_score,
            poi_status=poi_status,
            summary=comparison.summary,
            duration_ms=duration_ms,
            discrepancies=discrepancies,
            recommendations=list(comparison.recommendations),
        )

    def _load_fields(self) -> List[FieldSpec]:
        with self._session_factory() as db:
            return field_specs_from_rows(AuditRepository(db).list_data_fields())

    def _bill(self, completion: LLMCompletion, poi_id: uuid.UUID) -> None:
        if completion.usage is None:
            log_event(logger, logging.INFO, "llm_usage_missing", model=completion.model, poi_id=poi_id)
            return
        if self._cost_ledger is None:
            return
        self._cost_ledger.record_llm_usage(
            model=completion.model,
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
            poi_id=poi_id,
            details={"operation": "poi_audit"},
        )
