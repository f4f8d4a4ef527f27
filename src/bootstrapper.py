"""
Session Bootstrapper - pays for one full page render to get a trusted identity
The cookies and user-agent it returns are replayed by the lightweight fetchers
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from errors import BootstrapFailure
from flaresolverr import FlareSolverr
from models import SessionIdentity
from proxy_manager import ProxyManager
from stealth import BrowserStealth

logger = logging.getLogger(__name__)

VIEWPORT = {"width": 1920, "height": 1080}


@dataclass
class RenderResult:
    html: str
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    user_agent: str = ""
    url: str = ""


class PlaywrightRenderer:
    """Renders one page in a fresh stealth Chromium and reports the client state."""

    backend = "playwright"

    def __init__(self, config, proxy_manager: Optional[ProxyManager] = None,
                 stealth: Optional[BrowserStealth] = None):
        self.config = config
        self.proxy_manager = proxy_manager
        self.stealth = stealth or BrowserStealth(config)

    def _launch_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "headless": self.config.is_headless(),
            "args": self.stealth.get_stealth_args(),
            "timeout": self.config.get_launch_timeout(),
        }
        channel = self.config.get_browser_channel()
        if channel:
            options["channel"] = channel
        executable_path = self.config.get_browser_executable_path()
        if executable_path:
            if Path(executable_path).exists():
                options["executable_path"] = executable_path
            else:
                logger.warning("Browser executable not found: %s", executable_path)
        if self.proxy_manager is not None:
            proxy = self.proxy_manager.get_playwright_proxy()
            if proxy:
                options["proxy"] = proxy
        return options

    def navigate(self, url: str) -> RenderResult:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(**self._launch_options())
            try:
                context = browser.new_context(
                    viewport=VIEWPORT,
                    user_agent=self.config.get_default_user_agent(),
                    locale=self.config.get_locale(),
                    extra_http_headers={"Accept-Language": self.config.get_accept_language()},
                )
                self.stealth.apply_stealth_to_context(context)
                page = context.new_page()
                self.stealth.apply_stealth_to_page(page)
                page.set_default_navigation_timeout(self.config.get_navigation_timeout())

                page.goto(url, wait_until="domcontentloaded")
                page.wait_for_selector("body")
                page.wait_for_load_state("load")
                self.stealth.settle(page)

                if not self.stealth.wait_for_challenge(page, timeout_seconds=self.config.get_challenge_timeout()):
                    raise BootstrapFailure("challenge never cleared", url=url)

                return RenderResult(
                    html=page.content(),
                    cookies=context.cookies(),
                    user_agent=page.evaluate("() => navigator.userAgent"),
                    url=page.url,
                )
            finally:
                try:
                    browser.close()
                except PlaywrightError:
                    logger.debug("Browser close failed", exc_info=True)


class FlareSolverrRenderer:
    """Delegates the render to a FlareSolverr service."""

    backend = "flaresolverr"

    def __init__(self, client: FlareSolverr, proxy_manager: Optional[ProxyManager] = None):
        self.client = client
        self.proxy_manager = proxy_manager

    @classmethod
    def from_config(cls, config, proxy_manager: Optional[ProxyManager] = None) -> "FlareSolverrRenderer":
        client = FlareSolverr(url=config.get_flaresolverr_url(), timeout=config.get_flaresolverr_timeout())
        return cls(client, proxy_manager)

    def navigate(self, url: str) -> RenderResult:
        proxy_url = self.proxy_manager.get_proxy_url() if self.proxy_manager is not None else None
        result = self.client.solve(url, proxy_url=proxy_url)
        if not result.success:
            raise BootstrapFailure(f"FlareSolverr render failed: {result.error}", url=url)
        return RenderResult(html=result.html, cookies=result.cookies, user_agent=result.user_agent, url=result.url)


def build_renderer(config, proxy_manager: Optional[ProxyManager] = None):
    if config.get_bootstrap_backend() == "flaresolverr":
        return FlareSolverrRenderer.from_config(config, proxy_manager)
    return PlaywrightRenderer(config, proxy_manager)


class SessionBootstrapper:
    """
    Serialized access to the renderer.

    Only one render runs at a time; the lock is public so block recovery can
    check whether another worker already refreshed the session while it waited.
    """

    def __init__(self, renderer, max_attempts: int = 3, backoff_seconds: float = 2.0,
                 fallback_user_agent: str = ""):
        self.renderer = renderer
        self.max_attempts = max(int(max_attempts), 1)
        self.backoff_seconds = float(backoff_seconds)
        self.fallback_user_agent = fallback_user_agent
        self.lock = threading.RLock()
        self.renders = 0

    @classmethod
    def from_config(cls, config, proxy_manager: Optional[ProxyManager] = None) -> "SessionBootstrapper":
        return cls(
            build_renderer(config, proxy_manager),
            max_attempts=config.get_bootstrap_max_attempts(),
            backoff_seconds=config.get_bootstrap_backoff(),
            fallback_user_agent=config.get_default_user_agent(),
        )

    def _render_once(self, url: str) -> SessionIdentity:
        self.renders += 1
        try:
            result = self.renderer.navigate(url)
        except BootstrapFailure:
            raise
        except PlaywrightTimeoutError as exc:
            raise BootstrapFailure(f"render timeout: {exc}", url=url) from exc
        except Exception as exc:
            raise BootstrapFailure(f"renderer error: {exc}", url=url) from exc

        identity = SessionIdentity.from_browser_cookies(
            result.cookies,
            result.user_agent or self.fallback_user_agent,
            backend=getattr(self.renderer, "backend", "playwright"),
        )
        if not identity.cookies:
            raise BootstrapFailure("no cookies after navigation", url=url)
        return identity

    def bootstrap(self, seed_url: str) -> SessionIdentity:
        """Render seed_url and return the resulting identity. Raises BootstrapFailure."""
        with self.lock:
            last_error: Optional[BootstrapFailure] = None
            for attempt in range(1, self.max_attempts + 1):
                logger.info("Bootstrapping session (attempt %s/%s): %s", attempt, self.max_attempts, seed_url)
                try:
                    identity = self._render_once(seed_url)
                except BootstrapFailure as exc:
                    last_error = exc
                    logger.warning("Bootstrap attempt %s/%s failed: %s", attempt, self.max_attempts, exc)
                    if attempt < self.max_attempts:
                        time.sleep(self.backoff_seconds * attempt)
                    continue
                logger.info("✓ Session acquired (%s cookies, backend=%s)", len(identity.cookies), identity.backend)
                return identity

            raise BootstrapFailure(
                f"bootstrap failed after {self.max_attempts} attempt(s): {last_error}",
                url=seed_url,
                attempts=self.max_attempts,
            )
