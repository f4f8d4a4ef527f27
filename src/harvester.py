"""
Harvest Orchestrator - wires bootstrap, fetch pool, recovery and extraction
seed frontier -> bootstrap -> fetch until done -> flush outputs
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from block_detector import BlockDetector, visible_text
from bootstrapper import SessionBootstrapper, build_renderer
from dedupe_store import DedupeStore
from errors import BootstrapFailure, ConfigurationError, ExtractionFailure
from extractor import RecordExtractor
from fetcher import FetchExecutor, HttpFetcher
from frontier import Frontier
from links import build_search_url, build_slug_url, find_job_links, find_next_page
from models import EntryKind, FetchResult, FrontierEntry, JobRecord, SessionIdentity
from output_writer import OutputWriter
from proxy_manager import ProxyManager
from recovery import BlockRecovery, RecoveryState
from run_metrics import RunMetrics
from run_state import PAGES_VISITED, RunContext

logger = logging.getLogger(__name__)


@dataclass
class HarvestSummary:
    saved: int
    blocked: int
    pages_visited: int
    counters: Dict[str, int] = field(default_factory=dict)
    output_path: Optional[Path] = None
    markdown_path: Optional[Path] = None
    metrics_path: Optional[Path] = None
    recovery_state: str = RecoveryState.HEALTHY.value


def resolve_seeds(config) -> List[str]:
    """Explicit start URLs win; otherwise build one from the search terms."""
    explicit = config.get_start_urls()
    if explicit:
        usable = []
        for url in explicit:
            parsed = urlparse(url)
            if parsed.scheme in ("http", "https") and parsed.netloc:
                usable.append(url)
            else:
                logger.warning("Ignoring unusable start URL: %s", url)
        if not usable:
            raise ConfigurationError("No usable seed URL: every search.start_urls entry is invalid")
        return usable

    if config.get_seed_style() == "slug":
        return [build_slug_url(
            config.get_base_url(),
            config.get_slug_path_template(),
            keyword=config.get_keyword(),
            location=config.get_location(),
        )]
    return [build_search_url(
        config.get_base_url(),
        config.get_search_path(),
        keyword=config.get_keyword(),
        location=config.get_location(),
        category=config.get_category(),
    )]


class Harvester:
    """One harvest run. Build it, call run(), read the summary."""

    def __init__(self, config, *, renderer=None, fetcher=None, writer: Optional[OutputWriter] = None,
                 proxy_manager: Optional[ProxyManager] = None, dedupe_store: Optional[DedupeStore] = None):
        self.config = config
        self.seeds = resolve_seeds(config)
        self.proxy_manager = proxy_manager or ProxyManager.from_config(config)

        self.ctx = RunContext(
            target=config.get_results_wanted(),
            max_pages=config.get_max_pages(),
            metrics=RunMetrics(source=config.get_source_label()),
            collect_details=config.is_collect_details_enabled(),
        )

        if dedupe_store is None and config.is_dedupe_enabled() and config.get_dedupe_path():
            dedupe_store = DedupeStore(config.get_dedupe_path())
        self.dedupe_store = dedupe_store

        self.frontier = Frontier(self.ctx.max_pages, self.ctx.target_reached, known=self.dedupe_store)
        self.detector = BlockDetector.from_config(config)
        self.extractor = RecordExtractor.from_config(config)
        self.writer = writer or OutputWriter.from_config(config)

        self.bootstrapper = SessionBootstrapper(
            renderer or build_renderer(config, self.proxy_manager),
            max_attempts=config.get_bootstrap_max_attempts(),
            backoff_seconds=config.get_bootstrap_backoff(),
            fallback_user_agent=config.get_default_user_agent(),
        )
        self.recovery = BlockRecovery(
            self.ctx,
            self.bootstrapper,
            self.frontier,
            seed_url=self.seeds[0],
            max_rebootstraps=config.get_max_rebootstraps(),
            seed_policy=config.get_recovery_seed(),
            proxy_manager=self.proxy_manager,
        )
        self.fetcher = fetcher or HttpFetcher.from_config(config, self.proxy_manager)
        self.executor = FetchExecutor.from_config(config, self.ctx, self.fetcher)

    # === Stopping rules ===

    def should_stop(self) -> bool:
        if self.ctx.target_reached():
            logger.debug("Stop: target of %s reached", self.ctx.target)
            return True
        if (self.ctx.pages_visited >= self.ctx.max_pages
                and not self.frontier.has_detail_work()
                and self.frontier.in_flight(EntryKind.LIST) == 0):
            logger.debug("Stop: page ceiling reached with no detail work left")
            return True
        return self.frontier.is_idle()

    # === Handlers ===

    def handle(self, entry: FrontierEntry, result: FetchResult) -> None:
        soup = BeautifulSoup(result.body or "", "html.parser")
        classification = self.detector.classify(result.body, visible_text(soup), result.status)
        if classification.blocked:
            self.recovery.handle_block(entry, classification.reason, result.session_generation)
            return

        if entry.kind == EntryKind.LIST:
            self._handle_list(entry, soup)
        else:
            self._handle_detail(entry, soup)

    def _handle_list(self, entry: FrontierEntry, soup: BeautifulSoup) -> None:
        pages = self.ctx.metrics.inc(PAGES_VISITED)
        links = find_job_links(soup, entry.url, self.config.get_detail_link_pattern())
        logger.info("List page %s (depth %s): %s job link(s) - %s", pages, entry.depth, len(links), entry.url)

        if self.ctx.collect_details:
            offered = 0
            remaining = self.ctx.remaining()
            for url in links:
                if offered >= remaining:
                    break
                if self.frontier.offer_detail(url):
                    offered += 1
            self.ctx.metrics.inc("detail_offers", offered)
        else:
            self._save_urls_only(links)

        if not links:
            logger.info("No job links on %s, pagination ends here", entry.url)
            return
        if self.ctx.target_reached() or entry.depth >= self.ctx.max_pages:
            return
        next_url = find_next_page(soup, entry.url, self.config.get_page_param())
        if self.frontier.offer_pagination(next_url, entry.depth):
            self.ctx.metrics.inc("pagination_offers")
            logger.debug("Next page queued: %s", next_url)

    def _save_urls_only(self, links: List[str]) -> None:
        for url in links:
            if self.ctx.target_reached():
                return
            if self.dedupe_store is not None and url in self.dedupe_store:
                continue
            if not self.frontier.preload_seen([url]):
                continue
            self._save(JobRecord(url=url, source=self.config.get_source_label()))

    def _handle_detail(self, entry: FrontierEntry, soup: BeautifulSoup) -> None:
        if self.ctx.target_reached():
            return
        try:
            record = self.extractor.extract_record(soup, entry.url)
        except ExtractionFailure as exc:
            self.ctx.metrics.inc("extraction_failures")
            logger.warning("Extraction failed: %s", exc)
            return
        self._save(record)

    def _save(self, record: JobRecord) -> bool:
        if not self.ctx.claim_save_slot():
            return False
        self.writer.append(record)
        if self.dedupe_store is not None:
            self.dedupe_store.record(record.url)
        logger.info("Saved %s/%s: %s", self.ctx.saved, self.ctx.target, record)
        return True

    # === Run ===

    def _initial_identity(self) -> SessionIdentity:
        try:
            return self.bootstrapper.bootstrap(self.seeds[0])
        except BootstrapFailure as exc:
            if self.config.get_bootstrap_failure_policy() == "abort":
                raise
            logger.warning("Bootstrap failed, continuing without a session: %s", exc)
            self.ctx.metrics.record_event("bootstrap_failed", error=str(exc))
            return SessionIdentity.anonymous(self.config.get_default_user_agent())

    def run(self) -> HarvestSummary:
        self.frontier.seed(self.seeds)
        try:
            identity = self._initial_identity()
            self.ctx.session.replace(identity)
            self.ctx.metrics.set_gauge("concurrency", self.executor.concurrency)
            self.executor.run(self.frontier, self.handle, self.should_stop)
        finally:
            self.fetcher.close()

        return self.finish()

    def finish(self) -> HarvestSummary:
        metrics = self.ctx.metrics
        metrics.set_gauge("recovery_state", self.recovery.state.value)
        metrics.set_gauge("rebootstraps_used", self.recovery.rebootstraps)
        metrics.set_gauge("skipped_known", self.frontier.skipped_known)
        metrics.set_output_path(self.writer.jsonl_path)
        metrics.finish()

        markdown_path = self.writer.write_markdown(search_label=self.seeds[0])
        metrics_path = metrics.write_json(template=self.config.get_metrics_template())

        counters = metrics.snapshot()
        summary = HarvestSummary(
            saved=counters.get("saved", 0),
            blocked=counters.get("blocked", 0),
            pages_visited=counters.get(PAGES_VISITED, 0),
            counters=counters,
            output_path=self.writer.jsonl_path,
            markdown_path=markdown_path,
            metrics_path=metrics_path,
            recovery_state=self.recovery.state.value,
        )
        logger.info("Harvest finished: %s saved, %s blocked, %s list page(s)",
                    summary.saved, summary.blocked, summary.pages_visited)
        return summary
