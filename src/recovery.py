"""
Block Recovery - re-bootstraps the session when a fetch comes back blocked

HEALTHY -> SUSPECTED_BLOCKED -> REBOOTSTRAPPING -> HEALTHY | DEGRADED
"""

import logging
import threading
from enum import Enum
from typing import Optional

from bootstrapper import SessionBootstrapper
from errors import BlockDetected, BootstrapFailure
from frontier import Frontier
from models import FrontierEntry
from proxy_manager import ProxyManager
from run_state import BLOCKED, RunContext

logger = logging.getLogger(__name__)


class RecoveryState(str, Enum):
    HEALTHY = "HEALTHY"
    SUSPECTED_BLOCKED = "SUSPECTED_BLOCKED"
    REBOOTSTRAPPING = "REBOOTSTRAPPING"
    DEGRADED = "DEGRADED"


class RecoveryOutcome(str, Enum):
    REQUEUED = "requeued"
    ABANDONED = "abandoned"


class BlockRecovery:
    """
    Handles BLOCKED classifications for the whole run.

    Only the offending request is re-enqueued. Everything else in flight keeps
    going with whatever session it already had.
    """

    def __init__(self, ctx: RunContext, bootstrapper: SessionBootstrapper, frontier: Frontier,
                 seed_url: str, max_rebootstraps: int = 3, seed_policy: str = "original",
                 proxy_manager: Optional[ProxyManager] = None):
        self.ctx = ctx
        self.bootstrapper = bootstrapper
        self.frontier = frontier
        self.seed_url = seed_url
        self.max_rebootstraps = int(max_rebootstraps)
        self.seed_policy = seed_policy
        self.proxy_manager = proxy_manager
        self.rebootstraps = 0
        self._state = RecoveryState.HEALTHY
        self._state_lock = threading.Lock()

    @property
    def state(self) -> RecoveryState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: RecoveryState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.debug("Recovery state %s -> %s", self._state.value, state.value)
            self._state = state

    def _abandon(self, entry: FrontierEntry, why: str) -> RecoveryOutcome:
        self._set_state(RecoveryState.DEGRADED)
        self.ctx.metrics.inc("abandoned_after_block")
        self.ctx.metrics.record_event("abandoned", url=entry.url, reason=why)
        logger.error("Abandoning %s after block: %s", entry.url, why)
        return RecoveryOutcome.ABANDONED

    def _requeue(self, entry: FrontierEntry) -> RecoveryOutcome:
        recovered = entry.with_attempt(entry.attempt.mark_recovered())
        if not self.frontier.requeue(recovered):
            return self._abandon(entry, "already requeued once")
        self.ctx.metrics.inc("requeued_after_block")
        self._set_state(RecoveryState.HEALTHY)
        return RecoveryOutcome.REQUEUED

    def _seed_for(self, entry: FrontierEntry) -> str:
        if self.seed_policy == "blocked_url":
            return entry.url
        return self.seed_url

    def handle_block(self, entry: FrontierEntry, reason: str, fetch_generation: int) -> RecoveryOutcome:
        """Called by a fetch worker with the session generation its request used."""
        self.ctx.metrics.inc(BLOCKED)
        self._set_state(RecoveryState.SUSPECTED_BLOCKED)
        logger.warning("%s", BlockDetected(entry.url, reason))
        self.ctx.metrics.record_event("blocked", url=entry.url, reason=reason)

        if entry.attempt.recovered:
            return self._abandon(entry, "blocked again after recovery")

        with self.bootstrapper.lock:
            current_generation = self.ctx.session.generation
            if current_generation > fetch_generation:
                logger.info("Session already refreshed (generation %s), reusing it", current_generation)
                return self._requeue(entry)

            if self.rebootstraps >= self.max_rebootstraps:
                return self._abandon(entry, f"re-bootstrap ceiling reached ({self.max_rebootstraps})")

            self.rebootstraps += 1
            self.ctx.metrics.inc("rebootstraps")
            self._set_state(RecoveryState.REBOOTSTRAPPING)

            if self.proxy_manager is not None and self.proxy_manager.should_rotate_on_block():
                self.proxy_manager.rotate(reason="block")

            try:
                identity = self.bootstrapper.bootstrap(self._seed_for(entry))
            except BootstrapFailure as exc:
                return self._abandon(entry, f"re-bootstrap failed: {exc}")

            generation = self.ctx.session.replace(identity)
            logger.info("Session replaced (generation %s, re-bootstrap %s/%s)",
                        generation, self.rebootstraps, self.max_rebootstraps)

        return self._requeue(entry)
