"""
Proxy capability shared by the bootstrap render and the fetch pool.

Both paths must leave through the same exit IP or the bootstrapped cookies are
worthless, so the manager keeps one sticky proxy session for the run and only
changes it when block recovery asks for a rotation.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

logger = logging.getLogger(__name__)

SESSION_TAGS = ("-session-", "_session_", "-sessid-", "_sessid_")


@dataclass(frozen=True)
class ProxyManagerSettings:
    enabled: bool = False
    provider: str = "generic"
    server: str = ""
    username: str = ""
    password: str = ""
    username_template: Optional[str] = None
    sticky_session: bool = True
    session_ttl_seconds: int = 0
    rotate_on_block: bool = False


class ProxyManager:
    """
    Hands out the run's proxy endpoint in Playwright and requests formats.

    Stickiness is expressed through the proxy username: either a
    `username_template` containing `{session}`, or, for provider "iproyal",
    an automatic `-session-<id>` suffix.
    """

    def __init__(self, settings: Optional[ProxyManagerSettings] = None):
        self.settings = settings or ProxyManagerSettings()
        self._session_id: Optional[str] = None
        self._expires_at: Optional[float] = None
        self.rotations = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any) -> "ProxyManager":
        return cls(ProxyManagerSettings(**config.get_proxy_manager_settings()))

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled)

    def should_rotate_on_block(self) -> bool:
        return self.enabled and bool(self.settings.rotate_on_block)

    def _fresh_session(self) -> None:
        # caller holds the lock
        ttl = int(self.settings.session_ttl_seconds or 0)
        self._session_id = uuid.uuid4().hex[:12]
        self._expires_at = time.time() + ttl if ttl > 0 else None

    def session_id(self) -> Optional[str]:
        if not self.enabled or not self.settings.sticky_session:
            return None
        with self._lock:
            expired = self._expires_at is not None and time.time() >= self._expires_at
            if self._session_id is None or expired:
                self._fresh_session()
            return self._session_id

    def rotate(self, *, reason: str = "manual") -> None:
        """Start a new sticky session; the next render and every later fetch use it."""
        if not self.enabled:
            return
        with self._lock:
            self._fresh_session()
            self.rotations += 1
        logger.info("Proxy session rotated (provider=%s, reason=%s)", self.settings.provider, reason)

    def _username(self) -> str:
        base = (self.settings.username or "").strip()
        template = (self.settings.username_template or "").strip()
        if not template and "{session}" in base:
            template, base = base, ""

        session = self.session_id()
        if not session:
            return base
        if template:
            return template.replace("{session}", session)
        provider = (self.settings.provider or "").strip().lower()
        if provider == "iproyal" and base and not any(tag in base.lower() for tag in SESSION_TAGS):
            return f"{base}-session-{session}"
        return base

    def get_playwright_proxy(self) -> Optional[Dict[str, str]]:
        """{"server": ..., "username": ..., "password": ...} or None when disabled."""
        if not self.enabled:
            return None
        proxy = {"server": self.settings.server}
        username = self._username()
        password = (self.settings.password or "").strip()
        if username:
            proxy["username"] = username
        if password:
            proxy["password"] = password
        return proxy

    def get_proxy_url(self) -> Optional[str]:
        """The same endpoint as one URL with quoted credentials."""
        proxy = self.get_playwright_proxy()
        if not proxy:
            return None
        if not proxy.get("username"):
            return proxy["server"]
        parsed = urlparse(proxy["server"])
        auth = quote(proxy["username"], safe="")
        if proxy.get("password"):
            auth += ":" + quote(proxy["password"], safe="")
        return f"{parsed.scheme}://{auth}@{parsed.netloc}"

    def get_requests_proxies(self) -> Optional[Dict[str, str]]:
        url = self.get_proxy_url()
        return {"http": url, "https": url} if url else None

    def get_stats(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "provider": self.settings.provider, "total_rotations": self.rotations}
