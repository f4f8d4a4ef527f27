"""
Dedupe Store - Cross-run URL de-duplication using a hash log
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Set

from links import normalize_url

logger = logging.getLogger(__name__)


def url_hash(url: str) -> str:
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()


class DedupeStore:
    """Persists hashes of saved detail URLs so later runs skip them."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.seen_hashes: Set[str] = set()
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        payload = json.loads(line)
                        seen = payload.get("hash")
                        if seen:
                            self.seen_hashes.add(seen)
                    except json.JSONDecodeError:
                        logger.warning("Skipping invalid dedupe line")
        except OSError as exc:
            logger.warning("Failed to read dedupe log: %s", exc)

    def __contains__(self, url: str) -> bool:
        return url_hash(url) in self.seen_hashes

    def record(self, url: str) -> None:
        digest = url_hash(url)
        with self._lock:
            if digest in self.seen_hashes:
                return
            self.seen_hashes.add(digest)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"hash": digest, "recorded_at": datetime.now(timezone.utc).isoformat()}
            try:
                with open(self.path, "a") as f:
                    f.write(json.dumps(payload) + "\n")
            except OSError as exc:
                logger.warning("Failed to write dedupe log: %s", exc)
