"""Stateless policy evaluators that decide the verdict for a fetched link.

Each policy looks at one aspect of an outcome (status code, HTTPS use,
redirects, fragment anchors) and returns a :class:`PolicyDecision`. The
:func:`apply_policies` pipeline feeds the verdict from one stage to the next;
a stage may turn OK into BROKEN but never the reverse, and every stage still
gets to emit its warning events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Set, Tuple
from urllib.parse import unquote

from .results import (
    ErrorDetail,
    HttpInsecureInfo,
    LinkState,
    RedirectInfo,
    StatusCodeWarning,
)

LOGGER = logging.getLogger(__name__)

REDIRECTS_DISABLED_MESSAGE = "Redirect not allowed (redirects are disabled)"
HTTPS_REQUIRED_MESSAGE = "HTTPS required but URL uses HTTP"


@dataclass(slots=True)
class Outcome:
    """What a fetch produced, as seen by the policies."""

    url: str
    status: int
    final_url: Optional[str] = None
    location: Optional[str] = None
    has_body: bool = False
    is_html: bool = False
    body: Optional[str] = None
    fragment: str = ""
    is_local: bool = False

    @property
    def redirected(self) -> bool:
        return bool(self.final_url) and self.final_url != self.url

    @property
    def is_redirect_status(self) -> bool:
        return 300 <= self.status < 400

    @property
    def is_non_standard_redirect(self) -> bool:
        """A 3xx with content but nowhere to go; clients will not follow it."""
        return self.is_redirect_status and not self.location and self.has_body


@dataclass(slots=True)
class PolicyDecision:
    """Verdict after a policy stage plus anything it wants reported."""

    state: LinkState
    details: List[ErrorDetail] = field(default_factory=list)
    events: List[Tuple[str, object]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Status codes
# ---------------------------------------------------------------------------


def match_status_rule(status: int, rules: Mapping[str, str]) -> Optional[str]:
    """Return the configured action for ``status``; exact codes beat ``Nxx``."""
    exact = rules.get(str(status))
    if exact is not None:
        return exact
    return rules.get(f"{str(status)[:1]}xx") if status else None


def evaluate_status_code(
    status: int,
    rules: Mapping[str, str],
    url: str = "",
) -> PolicyDecision:
    action = match_status_rule(status, rules)
    if action is None:
        state = LinkState.OK if 200 <= status < 300 else LinkState.BROKEN
        return PolicyDecision(state)
    if action == "ok":
        return PolicyDecision(LinkState.OK)
    if action == "warn":
        return PolicyDecision(
            LinkState.OK,
            events=[("status_code_warning", StatusCodeWarning(url=url, status=status))],
        )
    if action == "skip":
        return PolicyDecision(LinkState.SKIPPED)
    return PolicyDecision(LinkState.BROKEN)


# ---------------------------------------------------------------------------
# HTTPS
# ---------------------------------------------------------------------------


def evaluate_https(url: str, mode: str, *, is_local: bool = False) -> PolicyDecision:
    """Check the ``require_https`` mode against a plain ``http://`` URL.

    The verdict returned here only matters in ``error`` mode.
    """
    if mode == "off" or is_local or not url.lower().startswith("http://"):
        return PolicyDecision(LinkState.OK)
    if mode == "warn":
        return PolicyDecision(
            LinkState.OK, events=[("http_insecure", HttpInsecureInfo(url=url))]
        )
    return PolicyDecision(
        LinkState.BROKEN, details=[ErrorDetail(HTTPS_REQUIRED_MESSAGE)]
    )


# ---------------------------------------------------------------------------
# Redirects
# ---------------------------------------------------------------------------


def evaluate_redirect(outcome: Outcome, mode: str) -> PolicyDecision:
    """Apply the ``redirects`` mode.

    In ``error`` mode redirects are not followed, so a redirect shows up as
    the raw 3xx response itself.
    """
    observed = outcome.redirected or outcome.is_non_standard_redirect
    if mode == "error" and outcome.is_redirect_status:
        return PolicyDecision(
            LinkState.BROKEN, details=[ErrorDetail(REDIRECTS_DISABLED_MESSAGE)]
        )
    if mode == "warn" and observed:
        target = outcome.final_url if outcome.redirected else outcome.location
        info = RedirectInfo(
            url=outcome.url,
            status=outcome.status,
            target_url=target,
            is_non_standard=outcome.is_non_standard_redirect,
        )
        return PolicyDecision(LinkState.OK, events=[("redirect", info)])
    return PolicyDecision(LinkState.OK)


# ---------------------------------------------------------------------------
# Fragments
# ---------------------------------------------------------------------------


def fragment_message(fragment: str) -> str:
    return f"Fragment identifier '#{fragment}' not found on page"


def evaluate_fragment(
    outcome: Outcome,
    enabled: bool,
    extract_ids: Callable[[str], Set[str]],
) -> PolicyDecision:
    if not enabled or not outcome.fragment or not outcome.is_html:
        return PolicyDecision(LinkState.OK)
    if outcome.body is None:
        return PolicyDecision(LinkState.OK)
    fragment = unquote(outcome.fragment)
    if fragment in extract_ids(outcome.body):
        return PolicyDecision(LinkState.OK)
    return PolicyDecision(LinkState.BROKEN, details=[ErrorDetail(fragment_message(fragment))])


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _merge(current: PolicyDecision, stage: PolicyDecision) -> PolicyDecision:
    current.events.extend(stage.events)
    if stage.state == LinkState.BROKEN:
        current.state = LinkState.BROKEN
        current.details.extend(stage.details)
    return current


def apply_policies(
    outcome: Outcome,
    *,
    status_codes: Mapping[str, str],
    require_https: str,
    redirects: str,
    check_fragments: bool,
    extract_ids: Callable[[str], Set[str]],
) -> PolicyDecision:
    """Run status → HTTPS → redirect → fragment and return the final verdict.

    Non-standard redirects have no destination to follow; outside of
    ``error`` mode their content is accepted as the answer.
    """
    status_outcome = outcome.status
    if outcome.is_non_standard_redirect and redirects != "error":
        status_outcome = 200
    decision = evaluate_status_code(status_outcome, status_codes, outcome.url)
    _merge(decision, evaluate_https(outcome.url, require_https, is_local=outcome.is_local))
    _merge(decision, evaluate_redirect(outcome, redirects))
    if decision.state == LinkState.OK:
        _merge(decision, evaluate_fragment(outcome, check_fragments, extract_ids))
    return decision
