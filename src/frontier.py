"""
Frontier Manager - pagination discovery and deduplication
Owns the work queue and the run-wide seen-set
"""

import logging
import threading
from collections import Counter, deque
from typing import Callable, Container, Iterable, List, Optional

from links import normalize_url
from models import EntryKind, FrontierEntry

logger = logging.getLogger(__name__)


class Frontier:
    """
    Thread-safe queue of pending URLs keyed by normalized URL.

    A URL enters the queue at most once for the whole run. The only
    redispatch is `requeue()` after a successful block recovery.
    """

    def __init__(self, max_pages: int, target_reached: Callable[[], bool] = lambda: False,
                 known: Optional[Container] = None):
        self.max_pages = int(max_pages)
        self._target_reached = target_reached
        self._known = known
        self.skipped_known = 0
        self._lock = threading.Lock()
        self._details: deque = deque()
        self._lists: deque = deque()
        self._seen: set = set()
        self._requeued: set = set()
        self._in_flight: Counter = Counter()
        self._in_flight_kinds: Counter = Counter()

    def _admit(self, entry: FrontierEntry) -> bool:
        # caller holds the lock
        if entry.url in self._seen:
            return False
        self._seen.add(entry.url)
        if entry.kind == EntryKind.DETAIL and self._known is not None and entry.url in self._known:
            self.skipped_known += 1
            return False
        if entry.kind == EntryKind.DETAIL:
            self._details.append(entry)
        else:
            self._lists.append(entry)
        return True

    def seed(self, urls: Iterable[str]) -> List[FrontierEntry]:
        """Enqueue the starting list pages at depth 1."""
        admitted = []
        with self._lock:
            for url in urls:
                entry = FrontierEntry(url=normalize_url(url), kind=EntryKind.LIST, depth=1)
                if self._admit(entry):
                    admitted.append(entry)
        logger.info("Frontier seeded with %s list page(s)", len(admitted))
        return admitted

    def preload_seen(self, urls: Iterable[str]) -> int:
        """Mark URLs saved by an earlier run so they are never fetched again."""
        count = 0
        with self._lock:
            for url in urls:
                normalized = normalize_url(url)
                if normalized not in self._seen:
                    self._seen.add(normalized)
                    count += 1
        return count

    def offer_pagination(self, url: str, current_depth: int) -> bool:
        if current_depth >= self.max_pages:
            logger.debug("Pagination rejected at depth %s (max_pages=%s)", current_depth, self.max_pages)
            return False
        if self._target_reached():
            return False
        entry = FrontierEntry(url=normalize_url(url), kind=EntryKind.LIST, depth=current_depth + 1)
        with self._lock:
            return self._admit(entry)

    def offer_detail(self, url: str) -> bool:
        if self._target_reached():
            return False
        entry = FrontierEntry(url=normalize_url(url), kind=EntryKind.DETAIL)
        with self._lock:
            return self._admit(entry)

    def next(self) -> Optional[FrontierEntry]:
        """Pop the next entry (details first) and mark it in flight."""
        with self._lock:
            if self._details:
                entry = self._details.popleft()
            elif self._lists:
                entry = self._lists.popleft()
            else:
                return None
            self._in_flight[entry.url] += 1
            self._in_flight_kinds[entry.kind] += 1
            return entry

    def mark_done(self, entry: FrontierEntry) -> None:
        with self._lock:
            if self._in_flight[entry.url] <= 0:
                return
            self._in_flight[entry.url] -= 1
            if self._in_flight[entry.url] == 0:
                del self._in_flight[entry.url]
            self._in_flight_kinds[entry.kind] -= 1

    def requeue(self, entry: FrontierEntry) -> bool:
        """Put a recovered entry back once. Anything else is refused."""
        if not entry.attempt.recovered:
            return False
        with self._lock:
            if entry.url in self._requeued:
                return False
            self._requeued.add(entry.url)
            if entry.kind == EntryKind.DETAIL:
                self._details.appendleft(entry)
            else:
                self._lists.appendleft(entry)
        logger.debug("Requeued after recovery: %s", entry.url)
        return True

    # === Introspection for stopping rules ===

    def in_flight(self, kind: Optional[EntryKind] = None) -> int:
        with self._lock:
            if kind is None:
                return sum(self._in_flight_kinds.values())
            return self._in_flight_kinds[kind]

    def has_detail_work(self) -> bool:
        with self._lock:
            return bool(self._details) or self._in_flight_kinds[EntryKind.DETAIL] > 0

    def is_idle(self) -> bool:
        """Nothing queued and nothing in flight."""
        with self._lock:
            return not self._details and not self._lists and sum(self._in_flight_kinds.values()) == 0

    def seen_count(self) -> int:
        with self._lock:
            return len(self._seen)
