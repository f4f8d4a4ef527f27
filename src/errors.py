"""
Error taxonomy for the harvester.

Only ConfigurationError is fatal. The rest are handled per URL or recovered
locally by the block-recovery loop.
"""

from typing import Optional


class HarvestError(Exception):
    """Base class for all harvester errors."""


class ConfigurationError(HarvestError):
    """Invalid or missing required input. Fatal at startup."""


class BootstrapFailure(HarvestError):
    """No session identity could be obtained from a full page render."""

    def __init__(self, message: str, *, url: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class BlockDetected(HarvestError):
    """The target served a challenge page instead of content."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Blocked at {url} ({reason})")
        self.url = url
        self.reason = reason


class TransportFailure(HarvestError):
    """Network-level failure (timeout, reset, 5xx). Retryable."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ExtractionFailure(HarvestError):
    """Document parsed but no usable title was found. Never retried."""

    def __init__(self, url: str, message: str = "no title extracted"):
        super().__init__(f"{message}: {url}")
        self.url = url
