"""
Data models for the harvester
Defines job records, session identity and frontier work items
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from requests.cookies import RequestsCookieJar


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """Represents a single harvested job posting"""

    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    job_type: Optional[str] = None
    date_posted: Optional[str] = None
    description_html: Optional[str] = None
    description_text: Optional[str] = None
    url: str
    source: Optional[str] = None
    scraped_at: datetime = Field(default_factory=_utc_now)

    @field_validator("url")
    @classmethod
    def _url_must_be_absolute(cls, value: str) -> str:
        parsed = urlparse(value or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"url must be absolute http(s), got {value!r}")
        return value

    def to_row(self) -> dict:
        """Fixed-schema JSON-ready dict (every key present, missing values null)."""
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        return f"{self.title or 'Unknown'} at {self.company or 'Unknown Company'} ({self.location or '-'})"


@dataclass(frozen=True)
class SessionCookie:
    name: str
    value: str
    domain: str = ""
    path: str = "/"


@dataclass(frozen=True)
class SessionIdentity:
    """
    A trusted client identity obtained from one full page render.

    Read-only once created; a re-bootstrap produces a new instance.
    """

    cookies: Tuple[SessionCookie, ...]
    user_agent: str
    acquired_at: datetime = field(default_factory=_utc_now)
    backend: str = "playwright"

    @classmethod
    def from_browser_cookies(cls, cookies: List[Dict], user_agent: str, *, backend: str = "playwright") -> "SessionIdentity":
        """Build from Playwright/FlareSolverr style cookie dicts."""
        parsed = []
        for cookie in cookies or []:
            if not isinstance(cookie, dict):
                continue
            name = cookie.get("name")
            value = cookie.get("value")
            if not name or value is None:
                continue
            parsed.append(
                SessionCookie(
                    name=str(name),
                    value=str(value),
                    domain=str(cookie.get("domain") or ""),
                    path=str(cookie.get("path") or "/"),
                )
            )
        return cls(cookies=tuple(parsed), user_agent=user_agent, backend=backend)

    @classmethod
    def anonymous(cls, user_agent: str) -> "SessionIdentity":
        """Identity used when a run continues without a bootstrapped session."""
        return cls(cookies=(), user_agent=user_agent, backend="none")

    def cookie_header(self) -> str:
        return "; ".join(f"{c.name}={c.value}" for c in self.cookies)

    def cookie_jar(self) -> RequestsCookieJar:
        jar = RequestsCookieJar()
        for c in self.cookies:
            jar.set(c.name, c.value, domain=c.domain, path=c.path or "/")
        return jar


class EntryKind(str, Enum):
    LIST = "LIST"
    DETAIL = "DETAIL"


@dataclass(frozen=True)
class AttemptRecord:
    """Per-request retry bookkeeping, carried with the frontier entry."""

    transport_attempts: int = 0
    recovered: bool = False

    def next_transport_attempt(self) -> "AttemptRecord":
        return replace(self, transport_attempts=self.transport_attempts + 1)

    def mark_recovered(self) -> "AttemptRecord":
        return replace(self, recovered=True)


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    kind: EntryKind
    depth: int = 0
    attempt: AttemptRecord = field(default_factory=AttemptRecord)

    def with_attempt(self, attempt: AttemptRecord) -> "FrontierEntry":
        return replace(self, attempt=attempt)


@dataclass
class FetchResult:
    url: str
    status: int
    body: str
    elapsed: float = 0.0
    session_generation: int = 0


@dataclass(frozen=True)
class Classification:
    blocked: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "Classification":
        return cls(blocked=False)
