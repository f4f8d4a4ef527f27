"""
Record Extractor - turns a job detail page into a JobRecord
Runs an ordered fallback chain: JSON-LD, DOM markers, text heuristics
"""

import html
import json
import logging
import re
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from errors import ExtractionFailure
from models import JobRecord

logger = logging.getLogger(__name__)

FIELDS = ("title", "company", "location", "salary", "job_type", "date_posted", "description_html")

Stage = Callable[[BeautifulSoup], Dict[str, Optional[str]]]

CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}

JOB_TYPE_MAP = {
    "full-time": "Full-time",
    "part-time": "Part-time",
    "contract": "Contract",
    "contractor": "Contract",
    "temporary": "Temporary",
    "intern": "Internship",
    "internship": "Internship",
    "per-diem": "Per diem",
    "volunteer": "Volunteer",
}


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    collapsed = re.sub(r"\s+", " ", str(text)).strip()
    return collapsed or None


# === Structured data (JSON-LD) ===

def _iter_ld_nodes(data: Any) -> Iterable[dict]:
    if isinstance(data, list):
        for item in data:
            yield from _iter_ld_nodes(item)
    elif isinstance(data, dict):
        yield data
        if "@graph" in data:
            yield from _iter_ld_nodes(data["@graph"])


def _is_job_posting(node: dict) -> bool:
    node_type = node.get("@type")
    types = node_type if isinstance(node_type, list) else [node_type]
    return any(str(t).lower() == "jobposting" for t in types if t)


def find_job_postings(soup: BeautifulSoup) -> List[dict]:
    """All JobPosting objects embedded as JSON-LD, in document order."""
    postings = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        postings.extend(node for node in _iter_ld_nodes(data) if _is_job_posting(node))
    return postings


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, list):
        for item in value:
            name = _name_of(item)
            if name:
                return name
        return None
    if isinstance(value, dict):
        return _clean(value.get("name"))
    if value is None:
        return None
    return _clean(str(value))


def _location_of(job_location: Any) -> Optional[str]:
    places = job_location if isinstance(job_location, list) else [job_location]
    for place in places:
        if isinstance(place, str):
            if _clean(place):
                return _clean(place)
            continue
        if not isinstance(place, dict):
            continue
        address = place.get("address", place)
        if isinstance(address, str):
            if _clean(address):
                return _clean(address)
            continue
        if not isinstance(address, dict):
            continue
        for key in ("addressLocality", "addressRegion", "addressCountry"):
            value = _name_of(address.get(key))
            if value:
                return value
    return None


def normalize_job_type(value: Any) -> Optional[str]:
    values = value if isinstance(value, list) else [value]
    normalized_types: List[str] = []
    for entry in values:
        if not entry:
            continue
        key = str(entry).strip().replace("_", "-").lower()
        normalized = JOB_TYPE_MAP.get(key, key.replace("-", " ").capitalize())
        if normalized and normalized not in normalized_types:
            normalized_types.append(normalized)
    return ", ".join(normalized_types) or None


def _format_amount(symbol: str, amount: Any) -> Optional[str]:
    try:
        number = float(amount)
    except (TypeError, ValueError):
        return None
    if number.is_integer():
        return f"{symbol}{int(number):,}"
    return f"{symbol}{number:,.2f}"


def format_salary(base_salary: Any) -> Optional[str]:
    """Render a schema.org MonetaryAmount as e.g. '€30,000 - €40,000 a year'."""
    if base_salary is None:
        return None
    if not isinstance(base_salary, dict):
        return _clean(str(base_salary))

    currency = str(base_salary.get("currency") or "").upper()
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} " if currency else "")
    value = base_salary.get("value")
    unit = None
    if isinstance(value, dict):
        unit = value.get("unitText")
        min_value = value.get("minValue", value.get("value"))
        max_value = value.get("maxValue")
    else:
        min_value, max_value = value, None

    min_text = _format_amount(symbol, min_value)
    max_text = _format_amount(symbol, max_value)
    if min_text and max_text and min_text != max_text:
        salary = f"{min_text} - {max_text}"
    else:
        salary = min_text or max_text
    if not salary:
        return None

    if unit:
        unit_norm = str(unit).strip().lower()
        article = "an" if unit_norm == "hour" else "a"
        salary = f"{salary} {article} {unit_norm}"
    return salary


def structured_data_stage(soup: BeautifulSoup) -> Dict[str, Optional[str]]:
    postings = find_job_postings(soup)
    if not postings:
        return {}
    posting = postings[0]

    description = posting.get("description")
    if description:
        description = html.unescape(str(description)).strip() or None

    return {
        "title": _clean(posting.get("title") or posting.get("name")),
        "company": _name_of(posting.get("hiringOrganization")),
        "location": _location_of(posting.get("jobLocation")),
        "date_posted": _clean(posting.get("datePosted")),
        "job_type": normalize_job_type(posting.get("employmentType")),
        "salary": format_salary(posting.get("baseSalary")),
        "description_html": description,
    }


# === DOM markers ===

TITLE_SELECTORS = [
    "[data-testid='offer-title']",
    ".ij-OfferDetailHeader-title",
    "[itemprop='title']",
    "h1.job-title",
    "h1",
]

COMPANY_SELECTORS = [
    "[data-testid='offer-company']",
    ".ij-OfferDetailHeader-companyLogo-companyName",
    "[itemprop='hiringOrganization']",
    "a[href*='/empresa-']",
    ".company-name",
]

LOCATION_SELECTORS = [
    "[data-testid='offer-location']",
    "#prefijoPoblacion",
    "[itemprop='jobLocation']",
    ".job-location",
]

DATE_SELECTORS = [
    "time[datetime]",
    "[data-testid='offer-date']",
    "[itemprop='datePosted']",
    ".publication-date",
]

DESCRIPTION_SELECTORS = [
    "[itemprop='description']",
    "#prefijoDescripcion1",
    ".ij-OfferDetailDescription",
    ".job-description",
]


def _first_text(soup: BeautifulSoup, selectors: List[str]) -> Optional[str]:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = _clean(element.get_text(" ", strip=True))
        if text:
            return text
    return None


def _first_markup(soup: BeautifulSoup, selectors: List[str]) -> Optional[str]:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is not None and element.get_text(strip=True):
            return element.decode_contents().strip()
    return None


def dom_marker_stage(soup: BeautifulSoup) -> Dict[str, Optional[str]]:
    date_posted = None
    time_tag = soup.select_one("time[datetime]")
    if time_tag is not None:
        date_posted = _clean(time_tag.get("datetime"))

    return {
        "title": _first_text(soup, TITLE_SELECTORS),
        "company": _first_text(soup, COMPANY_SELECTORS),
        "location": _first_text(soup, LOCATION_SELECTORS),
        "date_posted": date_posted or _first_text(soup, DATE_SELECTORS),
        "description_html": _first_markup(soup, DESCRIPTION_SELECTORS),
    }


# === Heuristics ===

SALARY_RE = re.compile(r"[€$£]|\bbrut[oa]s?\b|\bgross\b", re.IGNORECASE)
JOB_TYPE_RE = re.compile(
    r"\b(contrato|jornada|indefinido|temporal|contract|full[- ]time|part[- ]time|permanent)\b",
    re.IGNORECASE,
)
DATE_RE = re.compile(r"\bhace\b.*\d|\d.*\bhace\b|\bpublicad[ao]\b|\bposted\b", re.IGNORECASE)
LOCATION_RE = re.compile(r"^([^|]{2,60}?)\s*\|")

SCAN_TAGS = ["p", "span", "li", "dd", "dt", "div", "small", "strong"]
BLOCK_TAGS = ["div", "section", "article"]


def _shortest_match(soup: BeautifulSoup, pattern: re.Pattern, ceiling: int) -> Optional[str]:
    best = None
    for element in soup.find_all(SCAN_TAGS):
        text = _clean(element.get_text(" ", strip=True))
        if not text or len(text) >= ceiling:
            continue
        if not pattern.search(text):
            continue
        if best is None or len(text) < len(best):
            best = text
    return best


def _heuristic_location(soup: BeautifulSoup, ceiling: int) -> Optional[str]:
    text = _shortest_match(soup, LOCATION_RE, ceiling)
    if not text:
        return None
    match = LOCATION_RE.search(text)
    return _clean(match.group(1)) if match else None


def _heuristic_description(soup: BeautifulSoup, min_chars: int) -> Optional[str]:
    for element in soup.select("[class*='description'], [class*='content']"):
        if len(element.get_text(" ", strip=True)) > min_chars:
            return element.decode_contents().strip()

    best = None
    best_len = 0
    for element in soup.find_all(BLOCK_TAGS):
        length = len(element.get_text(" ", strip=True))
        if length <= min_chars:
            continue
        if best is None or length < best_len:
            best, best_len = element, length
    return best.decode_contents().strip() if best is not None else None


def heuristic_stage(soup: BeautifulSoup, max_chars: int = 100, min_description_chars: int = 100) -> Dict[str, Optional[str]]:
    return {
        "salary": _shortest_match(soup, SALARY_RE, max_chars),
        "job_type": _shortest_match(soup, JOB_TYPE_RE, max_chars * 2),
        "date_posted": _shortest_match(soup, DATE_RE, max(max_chars // 2, 1)),
        "location": _heuristic_location(soup, max_chars),
        "description_html": _heuristic_description(soup, min_description_chars),
    }


# === Chain ===

def merge_partials(partials: Iterable[Dict[str, Optional[str]]]) -> Dict[str, Optional[str]]:
    """Left-to-right merge keeping the first non-empty value per field."""
    merged: Dict[str, Optional[str]] = {name: None for name in FIELDS}
    for partial_record in partials:
        for name in FIELDS:
            if merged[name]:
                continue
            value = partial_record.get(name)
            if value:
                merged[name] = value
    return merged


def html_to_text(markup: Optional[str], max_chars: int = 10000) -> Optional[str]:
    """Strip markup, collapse whitespace, truncate."""
    if not markup:
        return None
    fragment = BeautifulSoup(markup, "html.parser")
    for tag in fragment(["script", "style", "noscript", "iframe"]):
        tag.decompose()
    text = _clean(fragment.get_text(" ", strip=True))
    if not text:
        return None
    return text[:max_chars]


class RecordExtractor:
    """Ordered stage list applied to a parsed detail page."""

    def __init__(self, stages: Optional[List[Stage]] = None, *, source: Optional[str] = None,
                 description_max_chars: int = 10000):
        self.stages = stages or [structured_data_stage, dom_marker_stage, heuristic_stage]
        self.source = source
        self.description_max_chars = description_max_chars

    @classmethod
    def from_config(cls, config) -> "RecordExtractor":
        stages = [
            structured_data_stage,
            dom_marker_stage,
            partial(
                heuristic_stage,
                max_chars=config.get_heuristic_max_chars(),
                min_description_chars=config.get_description_min_chars(),
            ),
        ]
        return cls(
            stages,
            source=config.get_source_label(),
            description_max_chars=config.get_description_max_chars(),
        )

    def extract(self, soup: BeautifulSoup, url: str) -> Dict[str, Optional[str]]:
        partials = []
        for stage in self.stages:
            try:
                partials.append(stage(soup))
            except Exception as exc:
                logger.warning("Extraction stage %s failed for %s: %s",
                               getattr(stage, "__name__", stage), url, exc)
        return merge_partials(partials)

    def build_record(self, fields: Dict[str, Optional[str]], url: str) -> JobRecord:
        if not fields.get("title"):
            raise ExtractionFailure(url)
        return JobRecord(
            title=fields.get("title"),
            company=fields.get("company"),
            location=fields.get("location"),
            salary=fields.get("salary"),
            job_type=fields.get("job_type"),
            date_posted=fields.get("date_posted"),
            description_html=fields.get("description_html"),
            description_text=html_to_text(fields.get("description_html"), self.description_max_chars),
            url=url,
            source=self.source,
        )

    def extract_record(self, soup: BeautifulSoup, url: str) -> JobRecord:
        return self.build_record(self.extract(soup, url), url)
