"""
robots.txt policy helper for crawler compliance.
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser

import requests

from app.logging_utils import log_event

logger = logging.getLogger(__name__)

# No robots.txt at all means everything is allowed.
_MISSING_STATUS_CODES = {404, 410}


class RobotsPolicy:
    """
    Fetches robots.txt once per origin and answers access checks from the cached rules.
    """

    def __init__(
        self,
        *,
        session: requests.Session,
        user_agent: str,
        timeout_seconds: float = 10.0,
        allow_when_unreachable: bool = True,
    ) -> None:
        self._session = session
        self._user_agent = user_agent
        self._timeout_seconds = timeout_seconds
        self._allow_when_unreachable = allow_when_unreachable
        self._cache: dict[str, RobotFileParser] = {}

    def can_fetch(self, url: str) -> bool:
        return self._get_parser(url).can_fetch(self._user_agent, url)

    def crawl_delay(self, url: str) -> float | None:
        parser = self._get_parser(url)
        delay = parser.crawl_delay(self._user_agent)
        if delay is None:
            delay = parser.crawl_delay("*")
        return float(delay) if delay is not None else None

    def _get_parser(self, url: str) -> RobotFileParser:
        origin = self._origin(url)
        cached = self._cache.get(origin)
        if cached is not None:
            return cached

        parser = RobotFileParser()
        robots_url = urljoin(origin, "/robots.txt")
        parser.set_url(robots_url)
        try:
            response = self._session.get(
                robots_url,
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout_seconds,
            )
            if response.ok:
                parser.parse(response.text.splitlines())
                log_event(logger, logging.INFO, "robots_loaded", origin=origin)
            elif response.status_code in _MISSING_STATUS_CODES:
                parser.parse([])
                log_event(
                    logger,
                    logging.INFO,
                    "robots_missing",
                    origin=origin,
                    status_code=response.status_code,
                )
            else:
                self._apply_fallback_policy(parser)
                log_event(
                    logger,
                    logging.WARNING,
                    "robots_unavailable",
                    origin=origin,
                    status_code=response.status_code,
                    fallback_allow=self._allow_when_unreachable,
                )
        except requests.RequestException as exc:
            self._apply_fallback_policy(parser)
            log_event(
                logger,
                logging.WARNING,
                "robots_fetch_failed",
                origin=origin,
                fallback_allow=self._allow_when_unreachable,
                error=str(exc),
            )

        self._cache[origin] = parser
        return parser

    def _apply_fallback_policy(self, parser: RobotFileParser) -> None:
        if self._allow_when_unreachable:
            parser.parse(["User-agent: *", "Allow: /"])
        else:
            parser.parse(["User-agent: *", "Disallow: /"])

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlparse(url)
        scheme = parsed.scheme or "https"
        return f"{scheme}://{parsed.netloc}"
