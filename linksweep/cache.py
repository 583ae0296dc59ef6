"""Per-run bookkeeping: visited URLs, host back-off deadlines, retry counts."""

from __future__ import annotations

from typing import Dict, Optional, Set


class CrawlCache:
    """Shared mutable state for one ``check`` run.

    All mutations happen on the event loop without awaiting in between, so a
    check-and-mark never interleaves with another task.
    """

    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self._host_delays: Dict[str, float] = {}
        self._error_attempts: Dict[str, int] = {}
        self._no_header_attempts: Dict[str, int] = {}

    def should_visit(self, url: str) -> bool:
        """Return True and remember ``url`` the first time it is seen."""
        if url in self._seen:
            return False
        self._seen.add(url)
        return True

    def mark_seen(self, url: str) -> None:
        self._seen.add(url)

    def record_host_delay(self, host: str, until: float) -> float:
        """Store the later of ``until`` and any existing deadline for ``host``."""
        current = self._host_delays.get(host)
        if current is None or until > current:
            self._host_delays[host] = until
        return self._host_delays[host]

    def get_host_delay(self, host: str) -> Optional[float]:
        return self._host_delays.get(host)

    def increment_error_attempt(self, url: str) -> int:
        """Bump and return the retry attempt count for ``url`` (first call → 1)."""
        attempt = self._error_attempts.get(url, 0) + 1
        self._error_attempts[url] = attempt
        return attempt

    def increment_no_header_attempt(self, url: str) -> int:
        """Like :meth:`increment_error_attempt`, for 429s without retry-after."""
        attempt = self._no_header_attempts.get(url, 0) + 1
        self._no_header_attempts[url] = attempt
        return attempt
