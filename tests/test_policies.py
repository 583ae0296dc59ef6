from __future__ import annotations

import pytest

from linksweep.links import extract_fragment_ids
from linksweep.policies import (
    HTTPS_REQUIRED_MESSAGE,
    REDIRECTS_DISABLED_MESSAGE,
    Outcome,
    apply_policies,
    evaluate_fragment,
    evaluate_https,
    evaluate_redirect,
    evaluate_status_code,
    fragment_message,
    match_status_rule,
)
from linksweep.results import LinkState, RedirectInfo, StatusCodeWarning


def _apply(outcome: Outcome, **overrides):
    kwargs = dict(
        status_codes={},
        require_https="off",
        redirects="allow",
        check_fragments=False,
        extract_ids=extract_fragment_ids,
    )
    kwargs.update(overrides)
    return apply_policies(outcome, **kwargs)


# ---------------------------------------------------------------------------
# Status codes
# ---------------------------------------------------------------------------


def test_exact_code_beats_pattern() -> None:
    rules = {"4xx": "warn", "404": "skip"}

    assert match_status_rule(404, rules) == "skip"
    assert match_status_rule(403, rules) == "warn"
    assert match_status_rule(500, rules) is None
    assert match_status_rule(0, rules) is None


def test_skip_and_warn_actions() -> None:
    rules = {"4xx": "warn", "404": "skip"}

    skipped = evaluate_status_code(404, rules, "https://example.com/a")
    warned = evaluate_status_code(403, rules, "https://example.com/b")

    assert skipped.state == LinkState.SKIPPED
    assert warned.state == LinkState.OK
    assert warned.events == [
        ("status_code_warning", StatusCodeWarning(url="https://example.com/b", status=403))
    ]


@pytest.mark.parametrize(
    "status, expected",
    [
        (200, LinkState.OK),
        (204, LinkState.OK),
        (301, LinkState.BROKEN),
        (404, LinkState.BROKEN),
        (0, LinkState.BROKEN),
    ],
)
def test_default_rule_is_2xx_only(status: int, expected: LinkState) -> None:
    assert evaluate_status_code(status, {}).state == expected


def test_ok_and_error_actions_override_default() -> None:
    assert evaluate_status_code(503, {"5xx": "ok"}).state == LinkState.OK
    assert evaluate_status_code(200, {"200": "error"}).state == LinkState.BROKEN


# ---------------------------------------------------------------------------
# HTTPS
# ---------------------------------------------------------------------------


def test_https_off_ignores_plain_http() -> None:
    decision = evaluate_https("http://example.com/", "off")
    assert decision.state == LinkState.OK
    assert decision.events == []


def test_https_warn_emits_event() -> None:
    decision = evaluate_https("http://example.com/", "warn")
    assert decision.state == LinkState.OK
    assert decision.events[0][0] == "http_insecure"
    assert decision.events[0][1].url == "http://example.com/"


def test_https_error_breaks_plain_http_only() -> None:
    broken = evaluate_https("http://example.com/", "error")
    secure = evaluate_https("https://example.com/", "error")

    assert broken.state == LinkState.BROKEN
    assert broken.details[0].message == HTTPS_REQUIRED_MESSAGE
    assert secure.state == LinkState.OK


def test_https_exempts_local_server() -> None:
    decision = evaluate_https("http://localhost:5000/", "error", is_local=True)
    assert decision.state == LinkState.OK


# ---------------------------------------------------------------------------
# Redirects
# ---------------------------------------------------------------------------


def test_redirect_error_mode_breaks_raw_3xx() -> None:
    outcome = Outcome(url="https://example.com/old", status=301, location="/new")
    decision = evaluate_redirect(outcome, "error")

    assert decision.state == LinkState.BROKEN
    assert decision.details[0].message == REDIRECTS_DISABLED_MESSAGE


def test_redirect_warn_mode_reports_followed_redirect() -> None:
    outcome = Outcome(
        url="https://example.com/old",
        status=200,
        final_url="https://example.com/new",
    )
    decision = evaluate_redirect(outcome, "warn")

    assert decision.state == LinkState.OK
    assert decision.events == [
        (
            "redirect",
            RedirectInfo(
                url="https://example.com/old",
                status=200,
                target_url="https://example.com/new",
                is_non_standard=False,
            ),
        )
    ]


def test_redirect_allow_mode_is_silent() -> None:
    outcome = Outcome(
        url="https://example.com/old",
        status=200,
        final_url="https://example.com/new",
    )
    decision = evaluate_redirect(outcome, "allow")
    assert decision.state == LinkState.OK
    assert decision.events == []


def test_non_standard_redirect_is_accepted_outside_error_mode() -> None:
    outcome = Outcome(url="https://example.com/x", status=302, has_body=True)

    assert outcome.is_non_standard_redirect
    assert _apply(outcome).state == LinkState.OK

    warned = _apply(outcome, redirects="warn")
    assert warned.state == LinkState.OK
    assert warned.events[0][1].is_non_standard is True

    broken = _apply(outcome, redirects="error")
    assert broken.state == LinkState.BROKEN
    assert broken.details[0].message == REDIRECTS_DISABLED_MESSAGE


# ---------------------------------------------------------------------------
# Fragments
# ---------------------------------------------------------------------------


def _fragment_outcome(fragment: str) -> Outcome:
    return Outcome(
        url=f"https://example.com/page#{fragment}",
        status=200,
        is_html=True,
        body='<h2 id="exists">Title</h2><a name="legacy"></a>',
        fragment=fragment,
    )


def test_fragment_found_by_id_or_name() -> None:
    for fragment in ("exists", "legacy"):
        decision = evaluate_fragment(
            _fragment_outcome(fragment), True, extract_fragment_ids
        )
        assert decision.state == LinkState.OK


def test_missing_fragment_is_broken_with_message() -> None:
    decision = evaluate_fragment(_fragment_outcome("missing"), True, extract_fragment_ids)

    assert decision.state == LinkState.BROKEN
    assert decision.details[0].message == fragment_message("missing")
    assert decision.details[0].message == "Fragment identifier '#missing' not found on page"


def test_fragment_check_disabled_or_not_html() -> None:
    outcome = _fragment_outcome("missing")
    assert evaluate_fragment(outcome, False, extract_fragment_ids).state == LinkState.OK

    outcome.is_html = False
    assert evaluate_fragment(outcome, True, extract_fragment_ids).state == LinkState.OK


def test_fragment_is_url_decoded_and_case_sensitive() -> None:
    outcome = _fragment_outcome("Exists")
    assert evaluate_fragment(outcome, True, extract_fragment_ids).state == LinkState.BROKEN

    encoded = Outcome(
        url="https://example.com/page#caf%C3%A9",
        status=200,
        is_html=True,
        body='<p id="café"></p>',
        fragment="caf%C3%A9",
    )
    assert evaluate_fragment(encoded, True, extract_fragment_ids).state == LinkState.OK


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def test_pipeline_never_upgrades_broken() -> None:
    outcome = Outcome(url="http://example.com/missing", status=404)
    decision = _apply(outcome, require_https="warn")

    assert decision.state == LinkState.BROKEN
    # Later stages still report their warnings.
    assert [name for name, _ in decision.events] == ["http_insecure"]


def test_pipeline_skips_fragment_check_once_broken() -> None:
    outcome = _fragment_outcome("missing")
    outcome.status = 500
    decision = _apply(outcome, check_fragments=True)

    assert decision.state == LinkState.BROKEN
    assert decision.details == []


def test_pipeline_collects_https_and_redirect_failures() -> None:
    outcome = Outcome(url="http://example.com/old", status=301, location="/new")
    decision = _apply(outcome, require_https="error", redirects="error")

    messages = [detail.message for detail in decision.details]
    assert decision.state == LinkState.BROKEN
    assert messages == [HTTPS_REQUIRED_MESSAGE, REDIRECTS_DISABLED_MESSAGE]
