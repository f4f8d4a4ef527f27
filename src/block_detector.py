"""
Block detection for lightweight fetches.

A blocked response usually comes back as HTTP 200 with a short challenge page
in place of the listing, so the status code alone is not enough.
"""

from typing import Iterable, Optional

from bs4 import BeautifulSoup
from bs4.element import PreformattedString

from models import Classification

BLOCK_PHRASES = [
    "verify you are human",
    "unusual activity",
    "enable javascript",
    "we can't identify your browser",
    "we can’t identify your browser",
    "javascript is enabled",
    "checking your browser",
    "just a moment",
    "additional verification required",
]

BLOCK_STATUSES = (401, 403)

DEFAULT_SHORT_DOCUMENT_BYTES = 5000


HIDDEN_TAGS = {"script", "style", "noscript", "template"}


def visible_text(soup: BeautifulSoup) -> str:
    """Text a reader would see: scripts, styles and noscript fallbacks skipped.

    Leaves the tree untouched so the extractor can still read JSON-LD.
    """
    parts = []
    for string in soup.find_all(string=True):
        if any(parent.name in HIDDEN_TAGS for parent in string.parents):
            continue
        if isinstance(string, PreformattedString):
            continue
        cleaned = string.strip()
        if cleaned:
            parts.append(cleaned)
    return " ".join(parts)


class BlockDetector:
    """Classifies a fetched document as content or challenge page."""

    def __init__(self, extra_phrases: Optional[Iterable[str]] = None,
                 short_document_bytes: int = DEFAULT_SHORT_DOCUMENT_BYTES):
        phrases = list(BLOCK_PHRASES)
        for phrase in extra_phrases or []:
            phrase = phrase.strip().lower()
            if phrase and phrase not in phrases:
                phrases.append(phrase)
        self.phrases = phrases
        self.short_document_bytes = int(short_document_bytes)

    @classmethod
    def from_config(cls, config) -> "BlockDetector":
        return cls(
            extra_phrases=config.get_extra_block_phrases(),
            short_document_bytes=config.get_short_document_bytes(),
        )

    def classify(self, body: str, text: str, status: Optional[int] = None) -> Classification:
        """First matching rule wins; status, then phrases, then the short-document check."""
        if status in BLOCK_STATUSES:
            return Classification(blocked=True, reason=f"status:{status}")

        lowered = (text or "").lower()
        for phrase in self.phrases:
            if phrase in lowered:
                return Classification(blocked=True, reason=f"phrase:{phrase}")

        body = body or ""
        if len(body.encode("utf-8")) < self.short_document_bytes:
            body_lower = body.lower()
            if "javascript" in body_lower and "browser" in body_lower:
                return Classification(blocked=True, reason="short-document")

        return Classification.ok()
