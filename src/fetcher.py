"""
Fetch Executor - replays the bootstrapped identity over plain HTTP
Bounded thread pool, per-request jitter, transport retries with backoff
"""

import logging
import random
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from http.cookiejar import DefaultCookiePolicy
from typing import Callable, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter

from block_detector import BLOCK_STATUSES
from errors import TransportFailure
from frontier import Frontier
from models import FetchResult, FrontierEntry, SessionIdentity
from proxy_manager import ProxyManager
from run_state import RunContext

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429,)

Handler = Callable[[FrontierEntry, FetchResult], None]


class HttpFetcher:
    """Pooled requests.Session that never keeps cookies between requests."""

    def __init__(self, timeout: float = 30.0, pool_size: int = 10,
                 proxy_manager: Optional[ProxyManager] = None,
                 accept_language: str = "es-ES,es;q=0.9,en;q=0.8",
                 referer: Optional[str] = None):
        self.timeout = float(timeout)
        self.proxy_manager = proxy_manager
        self.accept_language = accept_language
        self.referer = referer

        self.session = requests.Session()
        # cookies come from the SessionIdentity on every call, never from responses
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config, proxy_manager: Optional[ProxyManager] = None) -> "HttpFetcher":
        return cls(
            timeout=config.get_fetch_timeout(),
            pool_size=config.get_concurrency(),
            proxy_manager=proxy_manager,
            accept_language=config.get_accept_language(),
            referer=config.get_referer(),
        )

    def build_headers(self, identity: SessionIdentity) -> Dict[str, str]:
        headers = {
            "User-Agent": identity.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": self.accept_language,
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "same-origin",
            "Sec-Fetch-User": "?1",
            "Upgrade-Insecure-Requests": "1",
        }
        if self.referer:
            headers["Referer"] = self.referer
        return headers

    def fetch(self, url: str, identity: SessionIdentity) -> Tuple[int, str]:
        """GET url as identity. Raises TransportFailure on network errors, 429 and 5xx."""
        proxies = self.proxy_manager.get_requests_proxies() if self.proxy_manager is not None else None
        try:
            resp = self.session.get(
                url,
                headers=self.build_headers(identity),
                cookies=identity.cookie_jar(),
                proxies=proxies,
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"{type(exc).__name__}: {exc}", url=url) from exc

        if resp.status_code in RETRYABLE_STATUSES or resp.status_code >= 500:
            raise TransportFailure(f"HTTP {resp.status_code}", url=url, status=resp.status_code)

        if not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.status_code, resp.text

    def close(self) -> None:
        self.session.close()


class FetchExecutor:
    """
    Dispatches frontier entries to a bounded worker pool.

    The dispatch loop runs in the calling thread. Workers fetch with the
    current session snapshot and hand the result to the handler; blocked
    responses are the handler's business, not retried here.
    """

    def __init__(self, ctx: RunContext, fetcher: HttpFetcher, concurrency: int = 10,
                 delay_range: Tuple[float, float] = (0.1, 0.5), max_retries: int = 3,
                 backoff_base: float = 1.0):
        self.ctx = ctx
        self.fetcher = fetcher
        self.concurrency = max(int(concurrency), 1)
        self.delay_range = delay_range
        self.max_retries = int(max_retries)
        self.backoff_base = float(backoff_base)

    @classmethod
    def from_config(cls, config, ctx: RunContext, fetcher: HttpFetcher) -> "FetchExecutor":
        return cls(
            ctx,
            fetcher,
            concurrency=config.get_concurrency(),
            delay_range=(config.get_min_delay(), config.get_max_delay()),
            max_retries=config.get_max_retries(),
            backoff_base=config.get_backoff_base(),
        )

    def _random_delay(self) -> None:
        low, high = self.delay_range
        if high > 0:
            time.sleep(random.uniform(low, high))

    def fetch_entry(self, entry: FrontierEntry) -> Optional[FetchResult]:
        """Fetch with transport retries. None means the URL failed for good."""
        attempt = entry.attempt
        while True:
            self._random_delay()
            identity, generation = self.ctx.session.current()
            attempt = attempt.next_transport_attempt()
            started = time.monotonic()
            try:
                status, body = self.fetcher.fetch(entry.url, identity)
            except TransportFailure as exc:
                self.ctx.metrics.inc("transport_failures")
                if attempt.transport_attempts > self.max_retries:
                    logger.error("Giving up on %s after %s attempt(s): %s",
                                 entry.url, attempt.transport_attempts, exc)
                    self.ctx.metrics.inc("failed_urls")
                    return None
                backoff = self.backoff_base * (2 ** (attempt.transport_attempts - 1))
                logger.warning("Transport failure on %s (%s), retrying in %.1fs", entry.url, exc, backoff)
                time.sleep(backoff)
                continue

            if 400 <= status < 500 and status not in BLOCK_STATUSES:
                logger.warning("HTTP %s for %s, not retrying", status, entry.url)
                self.ctx.metrics.inc("failed_urls")
                return None

            return FetchResult(
                url=entry.url,
                status=status,
                body=body,
                elapsed=time.monotonic() - started,
                session_generation=generation,
            )

    def _run_one(self, frontier: Frontier, entry: FrontierEntry, handler: Handler) -> None:
        try:
            result = self.fetch_entry(entry)
            if result is not None:
                handler(entry, result)
        except Exception:
            logger.exception("Unhandled error processing %s", entry.url)
        finally:
            frontier.mark_done(entry)

    def run(self, frontier: Frontier, handler: Handler, should_stop: Callable[[], bool]) -> None:
        """Drain the frontier until should_stop() or nothing is left; waits for in-flight work."""
        in_flight = set()
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="fetch") as pool:
            while not should_stop():
                while len(in_flight) < self.concurrency and not should_stop():
                    entry = frontier.next()
                    if entry is None:
                        break
                    in_flight.add(pool.submit(self._run_one, frontier, entry, handler))

                if not in_flight:
                    # nothing running and nothing dispatchable
                    break
                _, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)

            if in_flight:
                logger.info("Stopping: waiting for %s in-flight request(s)", len(in_flight))
                wait(in_flight)
