# tests/conftest.py
import copy
import json
import os
import threading
from typing import Dict, List, Optional, Tuple

import pytest

from bootstrapper import RenderResult
from config_loader import ConfigLoader

BASE = "https://www.infojobs.net"
SEARCH_URL = f"{BASE}/jobsearch/search-results/list.xhtml?keyword=python&sortBy=PUBLICATION_DATE"


def search_page(n: int) -> str:
    """Normalized list URL for page n (query params sorted)."""
    return f"{BASE}/jobsearch/search-results/list.xhtml?keyword=python&page={n}&sortBy=PUBLICATION_DATE"


BLOCKED_HTML = """<html><head><title>Access</title></head><body>
<p>We can't identify your browser. Please make sure JavaScript is enabled.</p>
</body></html>"""


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (real browser or network).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that launch a real browser or hit the network (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def _no_proxy_env(monkeypatch):
    for name in ("PROXY_HOST", "PROXY_PORT", "PROXY_USER", "PROXY_PASS", "PROXY_PROVIDER", "FLARESOLVERR_URL"):
        monkeypatch.delenv(name, raising=False)
    yield


# ---------------------------------------------------------------------
# HTML builders
# ---------------------------------------------------------------------
def detail_url(slug: str) -> str:
    return f"{BASE}/madrid/{slug}/of-i{slug.replace('-', '')}"


def list_page(links: List[str], next_href: Optional[str] = None) -> str:
    items = "\n".join(
        f'<li class="offer"><h2><a href="{href}">Offer {i}</a></h2><span>Madrid</span></li>'
        for i, href in enumerate(links, 1)
    )
    pager = f'<a aria-label="Siguiente" href="{next_href}">Siguiente</a>' if next_href else ""
    return f"<html><head><title>Ofertas</title></head><body><ul>{items}</ul>{pager}</body></html>"


def detail_page(title: str, company: str = "Acme Software", location: str = "Madrid") -> str:
    description = "Buscamos una persona con experiencia en Python y APIs REST. " * 4
    return f"""<html><head><title>{title}</title></head><body>
<h1>{title}</h1>
<a href="/empresa-acme">{company}</a>
<span data-testid="offer-location">{location}</span>
<div class="job-description"><p>{description}</p></div>
</body></html>"""


def json_ld_page(posting: dict, body: str = "<main></main>") -> str:
    return (
        "<html><head>"
        f'<script type="application/ld+json">{json.dumps(posting)}</script>'
        f"</head><body>{body}</body></html>"
    )


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------
class FakeRenderer:
    """Returns a fresh cookie per call; can be scripted to fail."""

    backend = "fake"

    def __init__(self, failures: int = 0, cookies: bool = True):
        self.failures = failures
        self.cookies = cookies
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def navigate(self, url: str) -> RenderResult:
        with self._lock:
            self.calls.append(url)
            call = len(self.calls)
        if call <= self.failures:
            raise RuntimeError("render crashed")
        cookies = [{"name": "JSESSIONID", "value": f"token-{call}", "domain": ".infojobs.net", "path": "/"}]
        return RenderResult(
            html="<html><body>ok</body></html>",
            cookies=cookies if self.cookies else [],
            user_agent="FakeBrowser/1.0",
            url=url,
        )


class ScriptedFetcher:
    """
    Serves scripted (status, body) responses per URL.

    Each URL's list is consumed in order; the last response repeats.
    """

    def __init__(self, script: Dict[str, List[Tuple[int, str]]]):
        self.script = {url: list(responses) for url, responses in script.items()}
        self.calls: List[Tuple[str, str]] = []
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, url: str, identity) -> Tuple[int, str]:
        with self._lock:
            self.calls.append((url, identity.cookie_header()))
            responses = self.script.get(url)
            if not responses:
                return 404, "<html><body>not found</body></html>"
            if len(responses) > 1:
                return responses.pop(0)
            return responses[0]

    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------
BASE_SETTINGS = {
    "search": {
        "keyword": "python",
        "start_urls": [SEARCH_URL],
        "results_wanted": 10,
        "max_pages": 1,
        "collect_details": True,
    },
    "bootstrap": {"max_attempts": 1, "retry_backoff_seconds": 0, "on_failure": "abort"},
    "fetch": {
        "concurrency": 1,
        "min_concurrency": 1,
        "max_concurrency": 8,
        "delay_min": 0,
        "delay_max": 0,
        "max_retries": 2,
        "backoff_base_seconds": 0,
    },
    "recovery": {"max_rebootstraps": 3, "seed": "original"},
    "output": {"markdown": True},
    "logging": {"level": "DEBUG"},
}


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture
def make_config(tmp_path):
    """Factory: ConfigLoader with outputs redirected into tmp_path."""

    def _make(**sections) -> ConfigLoader:
        data = _deep_merge(BASE_SETTINGS, sections)
        data = _deep_merge(data, {
            "output": {
                "jsonl_file": str(tmp_path / "out" / "jobs.jsonl"),
                "md_file": str(tmp_path / "out" / "jobs.md"),
                "metrics_file": str(tmp_path / "out" / "metrics.json"),
            },
            "logging": {"log_file": str(tmp_path / "logs" / "run.log")},
        })
        return ConfigLoader.from_dict(data)

    return _make


@pytest.fixture
def fake_renderer():
    return FakeRenderer()
