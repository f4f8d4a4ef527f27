"""
Shared state for a single harvest run.

RunContext is handed to every component instead of module globals. Guarded
fields and their discipline:

- session:  SessionSlot, swapped under its own lock, never mutated in place
- metrics:  RunMetrics, every counter change under its lock
- target / max_pages: read-only after construction
"""

import threading
from dataclasses import dataclass, field
from typing import Tuple

from models import SessionIdentity
from run_metrics import RunMetrics

SAVED = "saved"
BLOCKED = "blocked"
PAGES_VISITED = "pages_visited"


class SessionSlot:
    """Holds the one live SessionIdentity plus a generation number."""

    def __init__(self, identity: SessionIdentity = None):
        self._lock = threading.Lock()
        self._identity = identity
        self._generation = 1 if identity is not None else 0

    def current(self) -> Tuple[SessionIdentity, int]:
        with self._lock:
            return self._identity, self._generation

    @property
    def identity(self) -> SessionIdentity:
        return self.current()[0]

    @property
    def generation(self) -> int:
        return self.current()[1]

    def replace(self, identity: SessionIdentity) -> int:
        """Install a new identity. Returns the new generation."""
        with self._lock:
            self._identity = identity
            self._generation += 1
            return self._generation


@dataclass
class RunContext:
    target: int
    max_pages: int
    metrics: RunMetrics
    session: SessionSlot = field(default_factory=SessionSlot)
    collect_details: bool = True

    @property
    def saved(self) -> int:
        return self.metrics.get(SAVED)

    @property
    def pages_visited(self) -> int:
        return self.metrics.get(PAGES_VISITED)

    def target_reached(self) -> bool:
        return self.saved >= self.target

    def remaining(self) -> int:
        return max(self.target - self.saved, 0)

    def claim_save_slot(self) -> bool:
        return self.metrics.inc_if_below(SAVED, self.target)
