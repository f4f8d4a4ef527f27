import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _make_run_id() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclass
class RunMetrics:
    """
    Run counters shared by every fetch worker.

    All mutation goes through one lock. `inc_if_below` is the only way the
    saved count should move, so it can never pass the result target.
    """

    source: str
    run_id: str = field(default_factory=_make_run_id)
    started_at_iso: str = field(default_factory=_utc_now_iso)
    started_at_monotonic: float = field(default_factory=time.monotonic)
    ended_at_iso: Optional[str] = None
    duration_seconds: Optional[float] = None
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)
    output_path: Optional[Path] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, key: str, amount: int = 1) -> int:
        with self._lock:
            self.counters[key] = self.counters.get(key, 0) + int(amount)
            return self.counters[key]

    def inc_if_below(self, key: str, limit: int) -> bool:
        """Claim one unit of key while it is below limit. False once the limit is hit."""
        with self._lock:
            if self.counters.get(key, 0) >= limit:
                return False
            self.counters[key] = self.counters.get(key, 0) + 1
            return True

    def get(self, key: str) -> int:
        with self._lock:
            return self.counters.get(key, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.counters)

    def set_gauge(self, key: str, value: Any) -> None:
        with self._lock:
            self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        payload: dict[str, Any] = {"t": _utc_now_iso(), "kind": kind}
        payload.update({k: v for k, v in data.items() if v is not None})
        with self._lock:
            self.events.append(payload)

    def set_output_path(self, path: Path) -> None:
        self.output_path = path

    def finish(self) -> None:
        """Mark the run as finished and record end time."""
        if self.ended_at_iso is None:
            self.ended_at_iso = _utc_now_iso()
            self.duration_seconds = max(time.monotonic() - self.started_at_monotonic, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        duration = self.duration_seconds
        if duration is None:
            duration = max(time.monotonic() - self.started_at_monotonic, 0.0)
        with self._lock:
            payload: Dict[str, Any] = {
                "source": self.source,
                "run_id": self.run_id,
                "started_at": self.started_at_iso,
                "ended_at": self.ended_at_iso or _utc_now_iso(),
                "duration_seconds": round(duration, 6),
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "events": list(self.events),
            }
        if self.output_path is not None:
            payload["output_path"] = str(self.output_path)
        return payload

    def write_json(self, *, template: str) -> Path:
        """Write to template with {timestamp} replaced by the run id."""
        path = Path((template or "output/run_metrics_{timestamp}.json").replace("{timestamp}", self.run_id))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        return path
