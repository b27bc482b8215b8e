"""
Common types for pipeline stage handlers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from app.domain.pipeline import QueueName
from app.pipeline.queue import QueuedJob
from app.pipeline.results import CallResult


@dataclass(frozen=True)
class FollowUp:
    queue: QueueName
    payload: BaseModel


@dataclass(frozen=True)
class StageOutput:
    """
    What a successful stage produced: jobs to enqueue next and a log summary.
    """

    follow_ups: list[FollowUp] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)


class StageHandler(ABC):
    queue: QueueName

    @abstractmethod
    def run(self, job: QueuedJob, payload: Any) -> CallResult[StageOutput]:
        """
        Process one attempt of ``job``.

        Return a TRANSIENT failure to have the attempt retried with backoff,
        PERMANENT or TERMINAL to fail the job without further attempts.
        Unexpected exceptions are treated as TRANSIENT by the runner.
        """

    def on_terminal_failure(self, job: QueuedJob, payload: Any, error: str) -> None:
        """
        Hook run once after the job failed for good.
        """
