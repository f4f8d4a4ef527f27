"""

Configuration loader for the harvester
Reads and validates settings.yaml
"""

import copy
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BOOTSTRAP_BACKENDS = ("playwright", "flaresolverr")
BOOTSTRAP_FAILURE_POLICIES = ("abort", "continue")
RECOVERY_SEEDS = ("original", "blocked_url")
SEED_STYLES = ("query", "slug")


class ConfigValidationError(ConfigurationError, ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_min_max_pair(min_val: Any, max_val: Any, min_field: str, max_field: str) -> None:
    """Validate that min_val <= max_val for a delay/range pair."""
    if min_val is not None and max_val is not None:
        if float(min_val) > float(max_val):
            raise ConfigValidationError(
                f"Invalid config: '{min_field}' ({min_val}) must be <= '{max_field}' ({max_val})"
            )


def _validate_choice(value: Any, choices: tuple, field: str) -> None:
    if value is None:
        return
    if str(value).strip().lower() not in choices:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be one of {', '.join(choices)}, got {value!r}"
        )


def _set_dotted(target: Dict[str, Any], key: str, value: Any) -> None:
    parts = key.split('.')
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: Optional[str] = "config/settings.yaml", data: Optional[Dict[str, Any]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.config: Dict[str, Any] = {}
        self.run_timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        if data is not None:
            self.config = copy.deepcopy(data)
            self._validate_invariants()
        else:
            self._load()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigLoader":
        """Build a config from an in-memory mapping (same validation as the file path)."""
        return cls(config_path=None, data=data or {})

    def _load(self) -> None:
        """Load config from YAML file"""
        if self.config_path is None or not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise ConfigValidationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(self.config, dict):
            raise ConfigValidationError(f"Config root must be a mapping: {self.config_path}")

        self._validate_invariants()

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Apply dotted-key overrides (e.g. from the CLI) and re-validate."""
        for key, value in (overrides or {}).items():
            if value is None:
                continue
            _set_dotted(self.config, key, value)
        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        # Search limits
        _validate_positive(self.get('search.results_wanted'), 'search.results_wanted')
        _validate_positive(self.get('search.max_pages'), 'search.max_pages')
        _validate_choice(self.get('search.seed_style'), SEED_STYLES, 'search.seed_style')
        start_urls = self.get('search.start_urls')
        if start_urls is not None and not isinstance(start_urls, (list, str)):
            raise ConfigValidationError("Invalid config: 'search.start_urls' must be a list of URLs")

        # Bootstrap
        _validate_choice(self.get('bootstrap.backend'), BOOTSTRAP_BACKENDS, 'bootstrap.backend')
        _validate_choice(self.get('bootstrap.on_failure'), BOOTSTRAP_FAILURE_POLICIES, 'bootstrap.on_failure')
        _validate_positive(self.get('bootstrap.max_attempts'), 'bootstrap.max_attempts')
        _validate_positive(self.get('bootstrap.navigation_timeout'), 'bootstrap.navigation_timeout')
        _validate_positive(self.get('bootstrap.launch_timeout'), 'bootstrap.launch_timeout')
        settle_min = self.get('bootstrap.settle_delay_min')
        settle_max = self.get('bootstrap.settle_delay_max')
        _validate_non_negative(settle_min, 'bootstrap.settle_delay_min')
        _validate_non_negative(settle_max, 'bootstrap.settle_delay_max')
        _validate_min_max_pair(settle_min, settle_max, 'bootstrap.settle_delay_min', 'bootstrap.settle_delay_max')
        _validate_non_negative(self.get('bootstrap.challenge_timeout'), 'bootstrap.challenge_timeout')
        _validate_non_negative(self.get('bootstrap.retry_backoff_seconds'), 'bootstrap.retry_backoff_seconds')

        # Fetch executor
        _validate_positive(self.get('fetch.concurrency'), 'fetch.concurrency')
        min_conc = self.get('fetch.min_concurrency')
        max_conc = self.get('fetch.max_concurrency')
        _validate_positive(min_conc, 'fetch.min_concurrency')
        _validate_positive(max_conc, 'fetch.max_concurrency')
        _validate_min_max_pair(min_conc, max_conc, 'fetch.min_concurrency', 'fetch.max_concurrency')
        delay_min = self.get('fetch.delay_min')
        delay_max = self.get('fetch.delay_max')
        _validate_non_negative(delay_min, 'fetch.delay_min')
        _validate_non_negative(delay_max, 'fetch.delay_max')
        _validate_min_max_pair(delay_min, delay_max, 'fetch.delay_min', 'fetch.delay_max')
        _validate_positive(self.get('fetch.timeout_seconds'), 'fetch.timeout_seconds')
        _validate_non_negative(self.get('fetch.max_retries'), 'fetch.max_retries')
        _validate_non_negative(self.get('fetch.backoff_base_seconds'), 'fetch.backoff_base_seconds')

        # Recovery
        _validate_non_negative(self.get('recovery.max_rebootstraps'), 'recovery.max_rebootstraps')
        _validate_choice(self.get('recovery.seed'), RECOVERY_SEEDS, 'recovery.seed')

        # Detector / extraction
        _validate_non_negative(self.get('detector.short_document_bytes'), 'detector.short_document_bytes')
        _validate_positive(self.get('extraction.description_max_chars'), 'extraction.description_max_chars')
        _validate_positive(self.get('extraction.heuristic_max_chars'), 'extraction.heuristic_max_chars')
        _validate_positive(self.get('extraction.description_min_chars'), 'extraction.description_min_chars')

        # Proxy settings (validated only when enabled)
        if self.is_proxy_enabled():
            try:
                _ = self.get_playwright_proxy()
            except ValueError as exc:
                raise ConfigValidationError(str(exc)) from exc
            _validate_non_negative(self.get_proxy_session_ttl_seconds(), 'proxy.session_ttl_seconds')

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'search.keyword')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === Search Config ===

    def get_keyword(self) -> str:
        """Get job search keyword"""
        return str(self.get('search.keyword', '') or '').strip()

    def get_location(self) -> str:
        """Get job search location code (province id)"""
        return str(self.get('search.location', '') or '').strip()

    def get_category(self) -> str:
        """Get job search category"""
        return str(self.get('search.category', '') or '').strip()

    def get_start_urls(self) -> List[str]:
        """Get explicit seed URLs"""
        urls = self.get('search.start_urls', []) or []
        if isinstance(urls, str):
            urls = [urls]
        return [str(u).strip() for u in urls if u and str(u).strip()]

    def get_results_wanted(self) -> int:
        """Get the result-count target for the run"""
        return int(self.get('search.results_wanted', 100))

    def get_max_pages(self) -> int:
        """Get the list-page ceiling for the run"""
        return int(self.get('search.max_pages', 20))

    def is_collect_details_enabled(self) -> bool:
        """Check if detail pages should be fetched (else list URLs are saved as-is)"""
        return bool(self.get('search.collect_details', True))

    def get_seed_style(self) -> str:
        """Get seed URL style when no explicit seed is configured: query | slug"""
        return str(self.get('search.seed_style', 'query') or 'query').strip().lower()

    # === Site Config ===

    def get_base_url(self) -> str:
        return str(self.get('site.base_url', 'https://www.infojobs.net')).rstrip('/')

    def get_search_path(self) -> str:
        return str(self.get('site.search_path', '/jobsearch/search-results/list.xhtml'))

    def get_slug_path_template(self) -> str:
        """Get the SEO path template, with {keyword} and {location} placeholders"""
        return str(self.get('site.slug_path_template', '/ofertas-trabajo/{location}/{keyword}'))

    def get_detail_link_pattern(self) -> str:
        return str(self.get('site.detail_link_pattern', r'/of-i[a-z0-9]+'))

    def get_page_param(self) -> str:
        return str(self.get('site.page_param', 'page'))

    def get_source_label(self) -> str:
        return str(self.get('site.source', 'infojobs.net'))

    def get_accept_language(self) -> str:
        return str(self.get('site.accept_language', 'es-ES,es;q=0.9,en-US;q=0.8,en;q=0.7'))

    def get_referer(self) -> str:
        return str(self.get('site.referer', '') or f"{self.get_base_url()}/")

    # === Bootstrap Config ===

    def get_bootstrap_backend(self) -> str:
        """Get render backend used for session bootstrap: playwright | flaresolverr"""
        return str(self.get('bootstrap.backend', 'playwright') or 'playwright').strip().lower()

    def get_bootstrap_max_attempts(self) -> int:
        return int(self.get('bootstrap.max_attempts', 3))

    def get_bootstrap_backoff(self) -> float:
        """Seconds between bootstrap attempts (multiplied by the attempt number)"""
        return float(self.get('bootstrap.retry_backoff_seconds', 2.0))

    def get_bootstrap_failure_policy(self) -> str:
        """Get what to do when the initial bootstrap is exhausted: abort | continue"""
        return str(self.get('bootstrap.on_failure', 'abort') or 'abort').strip().lower()

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return bool(self.get('bootstrap.headless', True))

    def use_stealth(self) -> bool:
        """Check if stealth init scripts should be applied"""
        return bool(self.get('bootstrap.use_stealth', True))

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(float(self.get('bootstrap.navigation_timeout', 45)) * 1000)

    def get_launch_timeout(self) -> int:
        """Get browser launch timeout in milliseconds"""
        return int(float(self.get('bootstrap.launch_timeout', 60)) * 1000)

    def get_settle_delay_min(self) -> float:
        return float(self.get('bootstrap.settle_delay_min', 1.5))

    def get_settle_delay_max(self) -> float:
        return float(self.get('bootstrap.settle_delay_max', 3.0))

    def get_challenge_timeout(self) -> int:
        """Seconds to wait for an in-browser challenge to clear during bootstrap"""
        return int(self.get('bootstrap.challenge_timeout', 20))

    def get_browser_channel(self) -> str:
        """Get Playwright browser channel override"""
        return self.get('bootstrap.channel', '') or ''

    def get_browser_executable_path(self) -> str:
        """Get browser executable path override"""
        return self.get('bootstrap.executable_path', '') or ''

    def get_locale(self) -> str:
        return str(self.get('bootstrap.locale', 'es-ES'))

    def get_default_user_agent(self) -> str:
        return str(self.get('bootstrap.user_agent', '') or DEFAULT_USER_AGENT)

    # === Fetch Config ===

    def get_min_concurrency(self) -> int:
        return int(self.get('fetch.min_concurrency', 4))

    def get_max_concurrency(self) -> int:
        return int(self.get('fetch.max_concurrency', 32))

    def get_concurrency(self) -> int:
        """Get worker count, clamped into [min_concurrency, max_concurrency]"""
        requested = int(self.get('fetch.concurrency', 10))
        return max(self.get_min_concurrency(), min(requested, self.get_max_concurrency()))

    def get_min_delay(self) -> float:
        """Get minimum delay before each lightweight request"""
        return float(self.get('fetch.delay_min', 0.1))

    def get_max_delay(self) -> float:
        """Get maximum delay before each lightweight request"""
        return float(self.get('fetch.delay_max', 0.5))

    def get_fetch_timeout(self) -> float:
        """Get hard per-request timeout in seconds"""
        return float(self.get('fetch.timeout_seconds', 30))

    def get_max_retries(self) -> int:
        """Get max transport retries per URL"""
        return int(self.get('fetch.max_retries', 3))

    def get_backoff_base(self) -> float:
        return float(self.get('fetch.backoff_base_seconds', 1.0))

    # === Recovery Config ===

    def get_max_rebootstraps(self) -> int:
        return int(self.get('recovery.max_rebootstraps', 3))

    def get_recovery_seed(self) -> str:
        """Which URL a re-bootstrap navigates to: original | blocked_url"""
        return str(self.get('recovery.seed', 'original') or 'original').strip().lower()

    # === Detector / Extraction Config ===

    def get_extra_block_phrases(self) -> List[str]:
        phrases = self.get('detector.extra_phrases', []) or []
        return [str(p) for p in phrases if p]

    def get_short_document_bytes(self) -> int:
        return int(self.get('detector.short_document_bytes', 5000))

    def get_description_max_chars(self) -> int:
        return int(self.get('extraction.description_max_chars', 10000))

    def get_heuristic_max_chars(self) -> int:
        return int(self.get('extraction.heuristic_max_chars', 100))

    def get_description_min_chars(self) -> int:
        return int(self.get('extraction.description_min_chars', 100))

    # === Output Config ===

    def _render_path(self, template: str) -> Path:
        use_timestamp = self.get('output.use_timestamp', True)
        timestamp = self.run_timestamp if use_timestamp else ''
        return Path(template.replace('{timestamp}', timestamp))

    def get_output_path(self, file_type: str = 'jsonl') -> Path:
        """Get output file path with the run timestamp if enabled"""
        template = self.get(f'output.{file_type}_file', f'output/jobs_{{timestamp}}.{file_type}')
        return self._render_path(template)

    def get_metrics_template(self) -> str:
        return str(self.get('output.metrics_file', 'output/run_metrics_{timestamp}.json'))

    def is_markdown_enabled(self) -> bool:
        return bool(self.get('output.markdown', True))

    # === Proxy Config ===

    def is_proxy_enabled(self) -> bool:
        """Check if a proxy should be used (disabled by default)."""
        return bool(self.get("proxy.enabled", False))

    def get_proxy_provider(self) -> str:
        provider = (self.get("proxy.provider", "") or os.getenv("PROXY_PROVIDER") or "").strip().lower()
        return provider or "generic"

    def is_proxy_sticky_session_enabled(self) -> bool:
        return bool(self.get("proxy.sticky_session", True))

    def get_proxy_session_ttl_seconds(self) -> int:
        value = self.get("proxy.session_ttl_seconds", 0)
        try:
            return max(int(value), 0)
        except (TypeError, ValueError):
            return 0

    def should_rotate_proxy_on_block(self) -> bool:
        return bool(self.get("proxy.rotate_on_block", False))

    def get_proxy_username_template(self) -> Optional[str]:
        template = (self.get("proxy.username_template", "") or "").strip()
        return template or None

    def _get_proxy_server_raw(self) -> str:
        server = (self.get("proxy.server", "") or "").strip()
        if server:
            return server

        host = (
            (self.get("proxy.host", "") or "").strip()
            or (os.getenv("PROXY_HOST") or "").strip()
        )
        port = str(
            (str(self.get("proxy.port", "") or "")).strip()
            or (os.getenv("PROXY_PORT") or "").strip()
        ).strip()
        if host and port:
            return f"{host}:{port}"
        return ""

    def _get_proxy_username(self) -> str:
        return (
            (self.get("proxy.username", "") or "").strip()
            or (os.getenv("PROXY_USER") or "").strip()
        )

    def _get_proxy_password(self) -> str:
        return (
            (self.get("proxy.password", "") or "").strip()
            or (os.getenv("PROXY_PASS") or "").strip()
        )

    def get_playwright_proxy(self) -> Optional[Dict[str, str]]:
        """
        Return a Playwright-ready proxy dict or None.

        Values may fall back to env vars (PROXY_HOST/PORT/USER/PASS), but the
        enabled flag must come from config (proxy.enabled).
        """
        if not self.is_proxy_enabled():
            return None

        server_raw = self._get_proxy_server_raw()
        if not server_raw:
            raise ValueError(
                "Proxy is enabled but no server is configured. "
                "Set proxy.server or proxy.host+proxy.port "
                "(or env PROXY_HOST+PROXY_PORT)."
            )

        server = server_raw if "://" in server_raw else f"http://{server_raw}"
        proxy: Dict[str, str] = {"server": server}

        username = self._get_proxy_username()
        password = self._get_proxy_password()
        if username:
            proxy["username"] = username
        if password:
            proxy["password"] = password

        return proxy

    def get_proxy_manager_settings(self) -> Dict[str, Any]:
        """
        Return settings for proxy_manager.ProxyManager.

        Sticky session behavior is provider-specific and handled by ProxyManager.
        """
        enabled = self.is_proxy_enabled()
        server = ""
        if enabled:
            proxy = self.get_playwright_proxy()
            server = proxy["server"]

        return {
            "enabled": bool(enabled),
            "provider": self.get_proxy_provider(),
            "server": server,
            "username": self._get_proxy_username(),
            "password": self._get_proxy_password(),
            "username_template": self.get_proxy_username_template(),
            "sticky_session": self.is_proxy_sticky_session_enabled(),
            "session_ttl_seconds": self.get_proxy_session_ttl_seconds(),
            "rotate_on_block": self.should_rotate_proxy_on_block(),
        }

    # === FlareSolverr Config ===

    def get_flaresolverr_url(self) -> str:
        return (self.get("flaresolverr.url", "") or os.getenv("FLARESOLVERR_URL") or "http://localhost:8191").strip()

    def get_flaresolverr_timeout(self) -> int:
        return int(self.get("flaresolverr.timeout", 60) or 60)

    # === Dedupe Config ===

    def is_dedupe_enabled(self) -> bool:
        """Check if cross-run dedupe is enabled"""
        return bool(self.get('dedupe.enabled', False))

    def get_dedupe_path(self) -> Optional[Path]:
        """Get dedupe hash log path"""
        path = self.get('dedupe.hash_file', '')
        return Path(path) if path else None

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return str(self.get('logging.level', 'INFO')).upper()

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/harvester_{timestamp}.log')
        return Path(template.replace('{timestamp}', self.run_timestamp))

    def __repr__(self) -> str:
        return (
            f"<Config: keyword={self.get_keyword()!r}, target={self.get_results_wanted()}, "
            f"max_pages={self.get_max_pages()}>"
        )


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)
