"""
Container health check for the audit API.

Exits 0 when /health reports status "ok". With HEALTHCHECK_REQUIRE_WORKERS=true
every queue worker must also be running, and with
HEALTHCHECK_REQUIRE_SCHEDULER=true the cron scheduler must be running.
"""

from __future__ import annotations

import os

import requests

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in _TRUTHY


def evaluate(body: dict, *, require_workers: bool, require_scheduler: bool) -> list[str]:
    problems: list[str] = []
    if body.get("status") != "ok":
        problems.append(f"status={body.get('status')!r}")

    workers = body.get("workers") or {}
    if require_workers:
        if not workers:
            problems.append("no workers reported")
        stopped = sorted(name for name, running in workers.items() if not running)
        if stopped:
            problems.append("workers stopped: " + ", ".join(stopped))

    if require_scheduler and not body.get("scheduler_running"):
        problems.append("scheduler not running")
    return problems


def main() -> int:
    port = os.getenv("PORT", "8000")
    path = os.getenv("HEALTHCHECK_PATH", "/health")
    url = f"http://127.0.0.1:{port}{path}"

    try:
        response = requests.get(url, timeout=2)
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        print(f"unhealthy: {exc}")
        return 1

    problems = evaluate(
        body,
        require_workers=_flag("HEALTHCHECK_REQUIRE_WORKERS"),
        require_scheduler=_flag("HEALTHCHECK_REQUIRE_SCHEDULER"),
    )
    if problems:
        print("unhealthy: " + "; ".join(problems))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
