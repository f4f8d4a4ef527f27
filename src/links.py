"""
Link helpers for the harvester
URL normalization, detail-link discovery and pagination successors
"""

import re
import unicodedata
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

DEFAULT_DETAIL_PATTERN = r"/of-i[a-z0-9]+"

VOLATILE_PARAMS = {
    "jsessionid",
    "sessionid",
    "session_id",
    "sid",
    "phpsessid",
    "aspsessionid",
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "_ga",
    "_gl",
}

NEXT_TEXT_MARKERS = ("siguiente", "next", "›", "»")

_REJECTED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:")
_JSESSION_PATH_RE = re.compile(r";jsessionid=[^/?#]*", re.IGNORECASE)
_DEFAULT_PORTS = {"http": 80, "https": 443}


def to_absolute(href: Optional[str], base: str) -> Optional[str]:
    """Resolve href against base. Returns None for non-navigable links."""
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    if href.lower().startswith(_REJECTED_SCHEMES):
        return None
    absolute = urljoin(base, href)
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def _is_volatile(name: str) -> bool:
    lowered = name.lower()
    return lowered in VOLATILE_PARAMS or lowered.startswith("utm_")


def normalize_url(url: str) -> str:
    """
    Canonical form used as the frontier's dedup key.

    Lower-cases scheme and host, drops default ports and fragments, strips
    session/tracking parameters and sorts what is left. Idempotent.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    port = parsed.port
    netloc = host
    if port and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    if parsed.username:
        auth = parsed.username
        if parsed.password:
            auth = f"{auth}:{parsed.password}"
        netloc = f"{auth}@{netloc}"

    path = _JSESSION_PATH_RE.sub("", parsed.path) or "/"
    params = _JSESSION_PATH_RE.sub("", f";{parsed.params}").lstrip(";") if parsed.params else ""

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_volatile(key)
    ]
    query_pairs.sort()
    query = urlencode(query_pairs)

    return urlunparse((scheme, netloc, path, params, query, ""))


def _collect_links(anchors, base: str, pattern: re.Pattern, found: List[str], seen: set) -> None:
    for anchor in anchors:
        absolute = to_absolute(anchor.get("href"), base)
        if not absolute or not pattern.search(absolute):
            continue
        normalized = normalize_url(absolute)
        if normalized in seen:
            continue
        seen.add(normalized)
        found.append(normalized)


def find_job_links(soup: BeautifulSoup, base: str, pattern: str = DEFAULT_DETAIL_PATTERN) -> List[str]:
    """Detail URLs in page order, headline links first, de-duplicated."""
    detail_re = re.compile(pattern, re.IGNORECASE)
    found: List[str] = []
    seen: set = set()
    _collect_links(soup.select("h2 a[href]"), base, detail_re, found, seen)
    _collect_links(soup.select("a[href]"), base, detail_re, found, seen)
    return found


def _is_disabled(anchor) -> bool:
    if anchor.has_attr("disabled"):
        return True
    if (anchor.get("aria-disabled") or "").lower() == "true":
        return True
    classes = anchor.get("class") or []
    return any("disabled" in str(c).lower() for c in classes)


def _explicit_next(soup: BeautifulSoup, base: str) -> Optional[str]:
    candidates = list(soup.select("a[rel~=next][href], link[rel~=next][href]"))
    for anchor in soup.select("a[aria-label][href]"):
        label = anchor.get("aria-label", "").lower()
        if "siguiente" in label or "next" in label:
            candidates.append(anchor)
    for anchor in soup.select("a[href]"):
        words = anchor.get_text(" ", strip=True).lower().split()
        if words and len(words) <= 3 and words[0] in NEXT_TEXT_MARKERS:
            candidates.append(anchor)

    for anchor in candidates:
        if _is_disabled(anchor):
            continue
        absolute = to_absolute(anchor.get("href"), base)
        if absolute:
            return normalize_url(absolute)
    return None


def synthesize_next_page(url: str, page_param: str = "page") -> str:
    """Increment the page parameter (missing counts as page 1)."""
    parsed = urlparse(url)
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    current = 1
    for key, value in pairs:
        if key == page_param:
            try:
                current = int(value)
            except ValueError:
                current = 1
            break

    updated = []
    replaced = False
    for key, value in pairs:
        if key == page_param:
            if not replaced:
                updated.append((key, str(current + 1)))
                replaced = True
            continue
        updated.append((key, value))
    if not replaced:
        updated.append((page_param, str(current + 1)))

    return urlunparse(parsed._replace(query=urlencode(updated), fragment=""))


def find_next_page(soup: BeautifulSoup, base: str, page_param: str = "page") -> str:
    """Explicit next-page link if the page has one, else the synthesized successor."""
    explicit = _explicit_next(soup, base)
    if explicit and normalize_url(explicit) != normalize_url(base):
        return explicit
    return synthesize_next_page(base, page_param)


def slugify(text: str) -> str:
    """Lower-case ASCII slug: 'Analista de Datos' -> 'analista-de-datos'."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower())
    return slug.strip("-")


def build_search_url(base_url: str, search_path: str, keyword: str = "",
                     location: str = "", category: str = "") -> str:
    """Query-style search URL, newest postings first."""
    params = []
    if keyword:
        params.append(("keyword", keyword))
    if location:
        params.append(("provinceIds", location))
    if category:
        params.append(("category", category))
    params.append(("sortBy", "PUBLICATION_DATE"))
    return f"{base_url.rstrip('/')}{search_path}?{urlencode(params)}"


def build_slug_url(base_url: str, path_template: str, keyword: str = "", location: str = "") -> str:
    """SEO path style search URL; empty segments are dropped."""
    path = path_template.format(keyword=slugify(keyword), location=slugify(location))
    segments = [segment for segment in path.split("/") if segment]
    return f"{base_url.rstrip('/')}/{'/'.join(segments)}"
