"""
Worker-count recommendation from queue depth.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from app import metrics
from app.config import AutoScalerSettings
from app.domain.pipeline import QueueName
from app.logging_utils import log_event
from app.pipeline.queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScalingDecision:
    waiting: int
    active: int
    previous: int
    recommended: int

    @property
    def changed(self) -> bool:
        return self.previous != self.recommended


class AutoScaler:
    """
    Moves the recommended worker count by at most one step per check.

    Two thresholds give hysteresis: above ``scale_up_threshold`` waiting jobs
    the count goes up, below ``scale_down_threshold`` it goes down, and in
    between it holds. Applying the recommendation is left to ``on_change``.
    """

    def __init__(
        self,
        *,
        job_queue: JobQueue,
        settings: AutoScalerSettings,
        initial_workers: int | None = None,
        on_change: Callable[[ScalingDecision], None] | None = None,
    ) -> None:
        if settings.scale_down_threshold > settings.scale_up_threshold:
            raise ValueError("scale_down_threshold must not exceed scale_up_threshold")
        self._job_queue = job_queue
        self._settings = settings
        self._on_change = on_change
        start = settings.min_workers if initial_workers is None else initial_workers
        self._workers = min(max(start, settings.min_workers), settings.max_workers)
        self._last: ScalingDecision | None = None
        self._lock = threading.Lock()
        metrics.WORKERS_RECOMMENDED.set(self._workers)

    @property
    def recommended_workers(self) -> int:
        return self._workers

    @property
    def last_decision(self) -> ScalingDecision | None:
        return self._last

    def check(self) -> ScalingDecision:
        waiting = 0
        active = 0
        for queue, counts in self._job_queue.all_counts().items():
            waiting += counts.pending
            active += counts.active
            metrics.QUEUE_WAITING.labels(queue=queue.value).set(counts.pending)

        with self._lock:
            previous = self._workers
            recommended = previous
            if waiting > self._settings.scale_up_threshold:
                recommended = min(previous + 1, self._settings.max_workers)
            elif waiting < self._settings.scale_down_threshold:
                recommended = max(previous - 1, self._settings.min_workers)
            self._workers = recommended
            decision = ScalingDecision(
                waiting=waiting,
                active=active,
                previous=previous,
                recommended=recommended,
            )
            self._last = decision

        metrics.WORKERS_RECOMMENDED.set(recommended)
        if decision.changed:
            log_event(
                logger,
                logging.INFO,
                "autoscaler_recommendation_changed",
                waiting=waiting,
                active=active,
                previous=previous,
                recommended=recommended,
            )
            if self._on_change is not None:
                self._on_change(decision)
        return decision


def queue_depths(job_queue: JobQueue) -> dict[str, dict[str, int]]:
    """Per-queue counts for reporting endpoints."""
    depths: dict[str, dict[str, int]] = {}
    for queue in QueueName:
        counts = job_queue.counts(queue)
        depths[queue.value] = {
            "waiting": counts.waiting,
            "delayed": counts.delayed,
            "active": counts.active,
            "completed": counts.completed,
            "failed": counts.failed,
        }
    return depths
