"""Data structures representing link check outcomes and crawl events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


class LinkState(str, Enum):
    """Terminal state of a single checked link."""

    OK = "OK"
    BROKEN = "BROKEN"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True, slots=True)
class ErrorDetail:
    """A failure caused by a thrown error or a policy decision."""

    message: str
    cause: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "cause": self.cause}


@dataclass(frozen=True, slots=True)
class ResponseDetail:
    """A failure caused by a terminal HTTP response."""

    status: int
    status_text: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    ok: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "url": self.url,
            "headers": dict(self.headers),
            "ok": self.ok,
        }


FailureDetail = Union[ErrorDetail, ResponseDetail]


@dataclass(frozen=True, slots=True)
class LinkResult:
    """Outcome record for one visited link."""

    url: str
    state: LinkState
    status: int = 0
    parent: Optional[str] = None
    failure_details: Tuple[FailureDetail, ...] = ()
    # Element and attribute the link came from; None for root paths.
    element_metadata: Optional[Dict[str, str]] = None

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        data: Dict[str, Any] = {
            "url": self.url,
            "status": self.status,
            "state": self.state.value,
            "parent": self.parent,
            "element_metadata": self.element_metadata,
        }
        if include_details:
            data["failure_details"] = [d.to_dict() for d in self.failure_details]
        return data


@dataclass(slots=True)
class CrawlResult:
    """Result of a whole check run."""

    links: List[LinkResult] = field(default_factory=list)
    passed: bool = True

    @classmethod
    def from_links(cls, links: Sequence[LinkResult]) -> "CrawlResult":
        """Aggregate link results into a report with its pass/fail verdict."""
        collected = list(links)
        passed = not any(link.state == LinkState.BROKEN for link in collected)
        return cls(links=collected, passed=passed)

    @property
    def broken(self) -> List[LinkResult]:
        return [link for link in self.links if link.state == LinkState.BROKEN]

    @property
    def skipped(self) -> List[LinkResult]:
        return [link for link in self.links if link.state == LinkState.SKIPPED]

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "links": [link.to_dict(include_details) for link in self.links],
        }


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RetryInfo:
    """Emitted when a link is scheduled to be requested again."""

    type: str  # retry-after, retry-no-header, retry-error
    url: str
    status: int
    seconds_until_retry: int
    current_attempt: Optional[int] = None
    max_attempts: Optional[int] = None
    retry_after_raw: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RedirectInfo:
    """Emitted in ``redirects="warn"`` mode whenever a redirect is observed."""

    url: str
    status: int
    target_url: Optional[str]
    is_non_standard: bool = False


@dataclass(frozen=True, slots=True)
class HttpInsecureInfo:
    """Emitted in ``require_https="warn"`` mode for plain-HTTP links."""

    url: str


@dataclass(frozen=True, slots=True)
class StatusCodeWarning:
    """Emitted when a ``warn`` status code rule matched."""

    url: str
    status: int
