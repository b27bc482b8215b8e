"""
Breadth-first website crawler.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from app import metrics
from app.config import CrawlerSettings
from app.crawling.parsing import parse_html
from app.crawling.rate_limiter import RequestRateLimiter
from app.crawling.robots import RobotsPolicy
from app.crawling.urls import ensure_scheme, normalize_url, registrable_domain, same_site
from app.crawling.website_data import extract_website_data
from app.logging_utils import log_event
from app.pipeline.backoff import compute_backoff

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class PageOutcome:
    FETCHED = "fetched"
    SKIPPED_ROBOTS = "skipped_robots"
    DUPLICATE = "duplicate"
    ERROR = "error"


@dataclass(frozen=True)
class CrawledPage:
    url: str
    depth: int
    outcome: str
    status_code: int | None = None
    content_type: str | None = None
    body: str | None = None
    title: str | None = None
    json_ld: list[dict[str, Any]] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    error: str | None = None
    final_url: str | None = None


@dataclass
class CrawlResult:
    start_url: str | None
    pages: list[CrawledPage] = field(default_factory=list)
    invalid_start_url: bool = False

    @property
    def fetched(self) -> list[CrawledPage]:
        return [page for page in self.pages if page.outcome == PageOutcome.FETCHED]

    @property
    def skipped(self) -> list[CrawledPage]:
        return [page for page in self.pages if page.outcome == PageOutcome.SKIPPED_ROBOTS]

    @property
    def errors(self) -> list[CrawledPage]:
        return [page for page in self.pages if page.outcome == PageOutcome.ERROR]

    @property
    def total_failure(self) -> bool:
        """True when nothing could be fetched and at least one URL errored."""
        return not self.fetched and bool(self.errors)

    def website_data(self) -> dict[str, Any]:
        json_ld: list[dict[str, Any]] = []
        phones: list[str] = []
        emails: list[str] = []
        for page in self.fetched:
            json_ld.extend(page.json_ld)
            phones.extend(page.phones)
            emails.extend(page.emails)
        data = extract_website_data(json_ld, phones=phones, emails=emails)
        if self.start_url:
            data.setdefault("website", self.start_url)
        return data


class WebCrawler:
    """
    Crawls one site breadth-first, staying on the start URL's registrable domain.

    Each normalized URL is visited at most once. robots.txt is consulted
    before every request and disallowed URLs are reported, never fetched.
    A redirect target goes through the same robots, domain and visited
    checks; when it fails one, the response body is dropped.
    All requests of an instance share one rate-limit gate.
    """

    def __init__(
        self,
        *,
        settings: CrawlerSettings,
        session: requests.Session | None = None,
        robots: RobotsPolicy | None = None,
        rate_limiter: RequestRateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = 2,
        on_request: Callable[[str, int | None], None] | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.robots = robots or RobotsPolicy(
            session=self.session,
            user_agent=settings.user_agent,
            timeout_seconds=min(settings.timeout_seconds, 10.0),
            allow_when_unreachable=settings.allow_when_robots_unreachable,
        )
        self.rate_limiter = rate_limiter or RequestRateLimiter(
            min_interval_seconds=settings.rate_limit_ms / 1000.0,
            sleep=sleep,
        )
        self._sleep = sleep
        self._max_retries = max(0, max_retries)
        self._on_request = on_request
        self._headers = {
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        }

    def crawl(self, start_url: str, *, max_depth: int | None = None) -> CrawlResult:
        depth_limit = self.settings.max_depth if max_depth is None else max(0, max_depth)
        start = normalize_url(ensure_scheme(start_url))
        if start is None:
            log_event(logger, logging.WARNING, "crawl_invalid_start_url", start_url=start_url)
            return CrawlResult(start_url=None, invalid_start_url=True)

        root_domain = registrable_domain(start)
        result = CrawlResult(start_url=start)
        queue: deque[tuple[str, int]] = deque([(start, 0)])
        visited: set[str] = {start}

        while queue and len(result.fetched) < self.settings.max_pages:
            url, depth = queue.popleft()
            page = self._visit(url, depth, root_domain=root_domain, visited=visited)
            result.pages.append(page)
            metrics.CRAWLER_PAGES_TOTAL.labels(outcome=page.outcome).inc()

            if page.outcome != PageOutcome.FETCHED or depth >= depth_limit:
                continue
            for link in page.links:
                if link in visited or not same_site(link, root_domain):
                    continue
                visited.add(link)
                queue.append((link, depth + 1))

        log_event(
            logger,
            logging.INFO,
            "crawl_finished",
            start_url=start,
            fetched=len(result.fetched),
            skipped_robots=len(result.skipped),
            errors=len(result.errors),
            unvisited=len(queue),
        )
        return result

    def _visit(self, url: str, depth: int, *, root_domain: str, visited: set[str]) -> CrawledPage:
        if not self.robots.can_fetch(url):
            log_event(logger, logging.INFO, "page_blocked_by_robots", url=url, depth=depth)
            return CrawledPage(url=url, depth=depth, outcome=PageOutcome.SKIPPED_ROBOTS)

        try:
            response = self._fetch(url)
        except requests.RequestException as exc:
            log_event(logger, logging.WARNING, "page_fetch_failed", url=url, depth=depth, error=str(exc))
            status_code = exc.response.status_code if exc.response is not None else None
            return CrawledPage(
                url=url,
                depth=depth,
                outcome=PageOutcome.ERROR,
                status_code=status_code,
                error=str(exc),
            )

        final_url = normalize_url(response.url) if response.url else None
        if final_url is not None and final_url != url:
            redirect_page = self._check_redirect(url, final_url, depth, root_domain, visited)
            if redirect_page is not None:
                return redirect_page
            visited.add(final_url)
        else:
            final_url = None

        content_type = response.headers.get("Content-Type", "")
        body = response.text or ""
        parsed = None
        if not content_type or "html" in content_type.lower():
            parsed = parse_html(body, base_url=response.url or url)

        log_event(
            logger,
            logging.INFO,
            "page_fetched",
            url=url,
            depth=depth,
            status_code=response.status_code,
            links=len(parsed.links) if parsed else 0,
            json_ld_items=len(parsed.json_ld) if parsed else 0,
        )
        return CrawledPage(
            url=url,
            depth=depth,
            outcome=PageOutcome.FETCHED,
            status_code=response.status_code,
            content_type=content_type or None,
            body=body[: self.settings.max_body_chars],
            title=parsed.title if parsed else None,
            json_ld=parsed.json_ld if parsed else [],
            links=parsed.links if parsed else [],
            phones=parsed.phones if parsed else [],
            emails=parsed.emails if parsed else [],
            final_url=final_url,
        )

    def _check_redirect(
        self,
        url: str,
        final_url: str,
        depth: int,
        root_domain: str,
        visited: set[str],
    ) -> CrawledPage | None:
        if not same_site(final_url, root_domain):
            log_event(logger, logging.INFO, "page_redirected_off_site", url=url, final_url=final_url, depth=depth)
            return CrawledPage(
                url=url,
                depth=depth,
                outcome=PageOutcome.ERROR,
                error=f"redirected off-site to {final_url}",
                final_url=final_url,
            )
        if not self.robots.can_fetch(final_url):
            log_event(logger, logging.INFO, "page_blocked_by_robots", url=final_url, depth=depth, redirected_from=url)
            return CrawledPage(url=url, depth=depth, outcome=PageOutcome.SKIPPED_ROBOTS, final_url=final_url)
        if final_url in visited:
            log_event(logger, logging.INFO, "page_redirected_to_visited", url=url, final_url=final_url, depth=depth)
            return CrawledPage(url=url, depth=depth, outcome=PageOutcome.DUPLICATE, final_url=final_url)
        return None

    def _fetch(self, url: str) -> requests.Response:
        """
        GET ``url`` through the rate-limit gate, retrying timeouts and retryable statuses.

        Raises requests.RequestException once retries are exhausted or on a
        non-retryable error status.
        """

        crawl_delay = self.robots.crawl_delay(url)
        attempt = 0
        while True:
            attempt += 1
            self.rate_limiter.wait(crawl_delay_seconds=crawl_delay)
            status_code: int | None = None
            try:
                response = self.session.get(
                    url,
                    headers=self._headers,
                    timeout=self.settings.timeout_seconds,
                    allow_redirects=True,
                )
                status_code = response.status_code
                if status_code >= 400:
                    raise requests.HTTPError(f"HTTP {status_code} for {url}", response=response)
                return response
            except (requests.Timeout, requests.ConnectionError, requests.HTTPError):
                retryable = status_code is None or status_code in RETRYABLE_STATUS_CODES
                if not retryable or attempt > self._max_retries:
                    raise
            finally:
                if self._on_request is not None:
                    self._on_request(url, status_code)

            delay = compute_backoff(attempt, base_seconds=1.0)
            log_event(logger, logging.INFO, "page_fetch_retry", url=url, attempt=attempt, wait_seconds=round(delay, 2))
            self._sleep(delay)
