"""Retry logic for comparator formatting errors.

Retries only on JSON parse or schema validation failures. Transport
failures reported by the adapter are returned unchanged; the adapter has
already retried them.
"""

import logging
from typing import Callable, Dict, List, Optional

from app.pipeline.results import CallResult
from llm_audit.adapter import BaseLLMAdapter, LLMCompletion
from llm_audit.schema import AuditComparison
from llm_audit.validator import LLMOutputValidationError, validate_audit_output

logger = logging.getLogger(__name__)


def generate_with_retry(
    adapter: BaseLLMAdapter,
    messages: List[Dict[str, str]],
    max_retries: int = 2,
    on_completion: Optional[Callable[[LLMCompletion], None]] = None,
) -> CallResult[AuditComparison]:
    """Generate a validated comparison, retrying on formatting errors.

    Args:
        adapter: An LLM adapter implementing ``generate(messages)``.
        messages: Chat messages from AuditPromptBuilder.
        max_retries: Maximum number of *additional* completions after the
            first invalid one. Total completions = 1 + max_retries.
        on_completion: Called with every completion the provider returned,
            valid or not, so its token usage can be billed.

    Returns:
        The validated comparison, the adapter's failure, or a TRANSIENT
        failure once every completion failed validation.
    """
    errors: List[LLMOutputValidationError] = []
    total_attempts = 1 + max(0, max_retries)

    for attempt in range(1, total_attempts + 1):
        result = adapter.generate(messages)
        if not result.ok:
            return result  # type: ignore[return-value]

        completion = result.unwrap()
        if on_completion is not None:
            on_completion(completion)

        try:
            comparison = validate_audit_output(completion.content)
        except LLMOutputValidationError as exc:
            errors.append(exc)
            logger.warning(
                "Attempt %d/%d failed at stage '%s': %s",
                attempt,
                total_attempts,
                exc.stage,
                "; ".join(exc.errors),
            )
            continue

        if attempt > 1:
            logger.info("LLM output validated on attempt %d/%d", attempt, total_attempts)
        return CallResult.success(comparison)

    return CallResult.transient(
        "llm_output_invalid",
        detail=f"{total_attempts} attempt(s); last error: {errors[-1]}",
    )
