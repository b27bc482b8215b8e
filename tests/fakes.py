"""
tests/fakes.py

Hand-written fakes for clocks, HTTP sessions, LLM adapters and mailers.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

from app.notifications.mailer import BaseMailer
from app.pipeline.results import CallResult
from llm_audit.adapter import BaseLLMAdapter, LLMCompletion


class FakeClock:
    """Manually advanced UTC clock; also usable as a ``sleep`` replacement."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        *,
        text: str = "",
        json_data: Any = None,
        headers: dict[str, str] | None = None,
        url: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.text = text
        self._json_data = json_data
        self.headers = headers if headers is not None else {"Content-Type": "text/html; charset=utf-8"}
        self.url = url

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._json_data is None:
            raise ValueError("No JSON body")
        return self._json_data


class FakeHttpSession:
    """
    Routes ``get`` calls by URL. A route holds either one response (served
    forever), a list (served in order, last one repeated) or an exception.
    Unknown URLs raise ``requests.ConnectionError``.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(route, list):
            item = route.pop(0) if len(route) > 1 else route[0]
        else:
            item = route
        if isinstance(item, Exception):
            raise item
        if item.url is None:
            item.url = url
        return item

    def urls(self) -> list[str]:
        return [call["url"] for call in self.calls]


class ScriptedLLMAdapter(BaseLLMAdapter):
    """
    Serves scripted completions in order; the last one repeats. Items are
    either CallResult failures or (content, usage) pairs.
    """

    def __init__(self, *items: Any, model: str = "gpt-4o") -> None:
        self.model = model
        self.items = list(items)
        self.calls: list[list[dict[str, str]]] = []

    def generate(self, messages):
        self.calls.append(messages)
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, CallResult):
            return item
        content, usage = item
        if not isinstance(content, str):
            content = json.dumps(content)
        return CallResult.success(LLMCompletion(content=content, model=self.model, usage=usage))


class FakeMailer(BaseMailer):
    """Records sent mails; scripted results are served in order, last one repeats."""

    def __init__(self, *results: CallResult[str]) -> None:
        self.results = list(results)
        self.sent: list[dict[str, str]] = []

    def send(self, *, to: str, subject: str, html: str, text: str) -> CallResult[str]:
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        if not self.results:
            return CallResult.success(to)
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]
