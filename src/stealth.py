"""
Browser stealth for the session bootstrap render.

Launch flags and an init script that hide the usual automation tells, an
organic settle step after navigation, and a check for in-browser challenge
interstitials that the bootstrapper waits out before reading cookies.
"""

import logging
import random
import time
from typing import Any, Dict, List, Optional

from playwright_stealth import Stealth

logger = logging.getLogger(__name__)


STEALTH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--window-size=1920,1080",
    "--lang=es-ES",
    "--mute-audio",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
]


# Runs before any page script. Every patch is wrapped so one failing
# property never stops the rest.
STEALTH_INIT_SCRIPT: str = """
(() => {
    const patch = (target, prop, value) => {
        try {
            Object.defineProperty(target, prop, { get: () => value, configurable: true });
        } catch (e) {}
    };

    patch(navigator, 'webdriver', undefined);
    patch(navigator, 'languages', ['es-ES', 'es', 'en-US', 'en']);
    patch(navigator, 'platform', 'Win32');
    patch(navigator, 'hardwareConcurrency', 8);
    patch(navigator, 'deviceMemory', 8);

    const fakePlugins = ['Chrome PDF Plugin', 'Chrome PDF Viewer', 'Native Client']
        .map((name) => ({ name, filename: name.toLowerCase().replace(/ /g, '-'), description: '' }));
    fakePlugins.item = (i) => fakePlugins[i] || null;
    fakePlugins.namedItem = (name) => fakePlugins.find((p) => p.name === name) || null;
    patch(navigator, 'plugins', fakePlugins);

    if (!window.chrome) {
        window.chrome = { runtime: {}, app: {}, csi: () => {}, loadTimes: () => {} };
    }

    try {
        const query = navigator.permissions.query.bind(navigator.permissions);
        navigator.permissions.query = (params) => params && params.name === 'notifications'
            ? Promise.resolve({ state: Notification.permission })
            : query(params);
    } catch (e) {}

    try {
        const vendorParams = { 37445: 'Intel Inc.', 37446: 'Intel Iris OpenGL Engine' };
        const original = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = function (param) {
            return param in vendorParams ? vendorParams[param] : original.call(this, param);
        };
    } catch (e) {}
})();
"""


# (kind, marker, reason) checked in order against the rendered page
CHALLENGE_MARKERS = [
    ("title", "just a moment", "title:just a moment"),
    ("title", "attention required", "title:attention required"),
    ("title", "checking your browser", "title:checking your browser"),
    ("title", "please wait", "title:please wait"),
    ("url", "__cf_chl", "url:__cf_chl"),
    ("url", "/cdn-cgi/challenge", "url:cdn-cgi"),
    ("url", "captcha-delivery.com", "url:datadome"),
    ("selector", "#cf-challenge-running", "selector:cf-challenge"),
    ("selector", "form#challenge-form", "selector:challenge-form"),
    ("selector", ".cf-turnstile", "selector:cf-turnstile"),
    ("selector", "iframe[src*='challenges.cloudflare.com']", "selector:cloudflare-iframe"),
    ("selector", "iframe[src*='captcha-delivery.com']", "selector:datadome-iframe"),
]


class BrowserStealth:
    """Stealth settings for one bootstrapper, read from config when given."""

    def __init__(self, config: Any = None):
        self.enabled = config.use_stealth() if config is not None else True
        self.settle_min = config.get_settle_delay_min() if config is not None else 1.5
        self.settle_max = config.get_settle_delay_max() if config is not None else 3.0
        self.scroll_offset = 500

    def get_stealth_args(self) -> List[str]:
        return list(STEALTH_ARGS) if self.enabled else []

    def apply_stealth_to_context(self, context: Any) -> None:
        if not self.enabled:
            return
        try:
            context.add_init_script(STEALTH_INIT_SCRIPT)
        except Exception as e:
            logger.warning("Failed to add stealth init script: %s", e)

    def apply_stealth_to_page(self, page: Any) -> None:
        """playwright-stealth evasions on top of the context init script."""
        if not self.enabled:
            return
        try:
            Stealth().apply_stealth_sync(page)
            logger.debug("Playwright-stealth applied to page")
        except Exception as e:
            logger.warning("Failed to apply playwright-stealth: %s", e)

    def settle(self, page: Any) -> None:
        """Pause, move the mouse and scroll so deferred fingerprint scripts run and set cookies."""
        time.sleep(random.uniform(self.settle_min, self.settle_max))
        try:
            page.mouse.move(random.randint(100, 500), random.randint(100, 300))
            time.sleep(random.uniform(0.2, 0.5))
            page.evaluate(f"window.scrollTo(0, {self.scroll_offset})")
            time.sleep(0.5)
        except Exception as e:
            logger.debug("Page settle failed (non-critical): %s", e)

    def is_challenge_page(self, page: Any) -> Optional[Dict[str, str]]:
        """Return {reason, title, url} when an interstitial is showing, else None."""
        try:
            title = (page.title() or "").lower()
            url = (page.url or "").lower()
            for kind, marker, reason in CHALLENGE_MARKERS:
                if kind == "title" and marker in title:
                    hit = True
                elif kind == "url" and marker in url:
                    hit = True
                elif kind == "selector":
                    hit = page.query_selector(marker) is not None
                else:
                    hit = False
                if hit:
                    return {"reason": reason, "title": title, "url": url}
        except Exception as e:
            logger.debug("Challenge check failed: %s", e)
        return None

    def wait_for_challenge(self, page: Any, timeout_seconds: int = 20, poll_interval: float = 1.0) -> bool:
        """True once no challenge is showing; False if it is still there at the deadline."""
        detection = self.is_challenge_page(page)
        if detection is None:
            return True

        logger.info("Challenge detected during bootstrap (%s), waiting up to %ss",
                    detection["reason"], timeout_seconds)
        deadline = time.monotonic() + timeout_seconds
        while time.monotonic() < deadline:
            time.sleep(poll_interval)
            if self.is_challenge_page(page) is None:
                logger.info("Challenge cleared")
                return True

        logger.warning("Challenge did not clear within %ss", timeout_seconds)
        return False
