"""Output and formatting helpers for the CLI."""

from __future__ import annotations

import csv
import io
import json
import time
from typing import Dict, List, Optional
from xml.etree import ElementTree

from .options import ConfigError
from .results import CrawlResult, LinkResult, LinkState

FORMATS = ("text", "json", "csv", "junit")

# Lower is chattier; "none" hides every link.
VERBOSITY_LEVELS: Dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
    "none": 100,
}

CSV_FIELDS = ["url", "status", "state", "parent", "element_metadata", "failure_details"]


def parse_verbosity(verbosity: Optional[str], silent: bool = False) -> str:
    """Resolve ``--verbosity``/``--silent`` into one of ``VERBOSITY_LEVELS``."""
    if silent and verbosity:
        raise ConfigError(
            "The --silent and --verbosity flags cannot both be defined. "
            "Please consider using --verbosity only."
        )
    if silent:
        return "error"
    if not verbosity:
        return "warning"
    value = verbosity.lower()
    if value not in VERBOSITY_LEVELS:
        raise ConfigError(
            f"Invalid verbosity {verbosity!r}: must be one of "
            f"{', '.join(VERBOSITY_LEVELS)}"
        )
    return value


def parse_format(fmt: Optional[str]) -> str:
    if not fmt:
        return "text"
    value = fmt.lower()
    if value not in FORMATS:
        raise ConfigError(f"Invalid format {fmt!r}: must be one of {', '.join(FORMATS)}")
    return value


def is_visible(link: LinkResult, verbosity: str) -> bool:
    level = VERBOSITY_LEVELS[verbosity]
    if link.state == LinkState.BROKEN:
        return level <= VERBOSITY_LEVELS["error"]
    if link.state == LinkState.OK:
        return level <= VERBOSITY_LEVELS["warning"]
    return level <= VERBOSITY_LEVELS["info"]


def filter_links(links: List[LinkResult], verbosity: str) -> List[LinkResult]:
    return [link for link in links if is_visible(link, verbosity)]


def format_json(result: CrawlResult, verbosity: str) -> str:
    include_details = verbosity == "debug"
    payload = {
        "passed": result.passed,
        "links": [
            link.to_dict(include_details)
            for link in filter_links(result.links, verbosity)
        ],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def format_csv(result: CrawlResult, verbosity: str) -> str:
    include_details = verbosity == "debug"
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, lineterminator="\n")
    writer.writeheader()
    for link in filter_links(result.links, verbosity):
        row = link.to_dict(include_details)
        row["parent"] = row["parent"] or ""
        metadata = row["element_metadata"]
        row["element_metadata"] = json.dumps(metadata) if metadata else ""
        details = row.pop("failure_details", None)
        row["failure_details"] = json.dumps(details) if details else ""
        writer.writerow(row)
    return buffer.getvalue()


def format_junit(result: CrawlResult, timestamp: Optional[float] = None) -> str:
    """Render the report as a JUnit XML suite, one testcase per link."""
    links = result.links
    suites = ElementTree.Element("testsuites")
    suite = ElementTree.SubElement(
        suites,
        "testsuite",
        id=str(int(timestamp if timestamp is not None else time.time())),
        name="linksweep",
        failures="0",
        skipped=str(len(result.skipped)),
        tests=str(len(links)),
        errors=str(len(result.broken)),
    )
    for link in links:
        if link.state == LinkState.BROKEN:
            name = f"Link {link.url} on {link.parent} is not correct ({link.status})."
        elif link.state == LinkState.SKIPPED:
            name = f"Link {link.url} on {link.parent} is skipped."
        else:
            name = f"Link {link.url} on {link.parent} is ok."
        case = ElementTree.SubElement(
            suite, "testcase", classname="linksweep", name=name, time="0"
        )
        if link.state == LinkState.BROKEN:
            details = [d.to_dict() for d in link.failure_details]
            ElementTree.SubElement(
                case, "failure", message=json.dumps(details) if details else ""
            )
        elif link.state == LinkState.SKIPPED:
            ElementTree.SubElement(case, "skipped")
    ElementTree.indent(suites)
    body = ElementTree.tostring(suites, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body


def _state_tag(link: LinkResult) -> str:
    if link.state == LinkState.SKIPPED:
        return "[SKP]"
    return f"[{link.status}]"


def format_text(result: CrawlResult, verbosity: str) -> List[str]:
    """Group visible links under the page they were found on."""
    parents: Dict[str, List[LinkResult]] = {}
    for link in result.links:
        parents.setdefault(link.parent or "", []).append(link)

    lines: List[str] = []
    for parent, links in parents.items():
        visible = filter_links(links, verbosity)
        if not visible:
            continue
        lines.append(parent)
        for link in visible:
            lines.append(f"  {_state_tag(link)} {link.url}")
            if link.state == LinkState.BROKEN and verbosity == "debug":
                details = [d.to_dict() for d in link.failure_details]
                lines.append(json.dumps(details, indent=2))
    return lines


def summary_line(result: CrawlResult, elapsed: float) -> str:
    scanned = len([link for link in result.links if link.state != LinkState.SKIPPED])
    seconds = round(elapsed, 3)
    if not result.passed:
        return (
            f"ERROR: Detected {len(result.broken)} broken links. "
            f"Scanned {scanned} links in {seconds} seconds."
        )
    return f"Successfully scanned {scanned} links in {seconds} seconds."
