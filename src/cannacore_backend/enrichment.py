"""
Regulation links for compliance findings.

Findings returned by the workflow carry a free-text ``ref`` such as
"21 CFR 101.9" or "Fla. Stat. 581.217". This module maps known references
to the public text of the regulation and stores it in the finding's ``url``
field, leaving findings that already have a URL untouched.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

# Checked in order; the first marker contained in the ref wins, so the
# specific 21 CFR sections precede the generic "101." catch-all.
REFERENCE_URLS: List[Tuple[str, str]] = [
    ("581.217", "https://www.leg.state.fl.us/Statutes/index.cfm?App_mode=Display_Statute&URL=0500-0599/0581/Sections/0581.217.html"),
    ("5K-4.034", "https://www.law.cornell.edu/regulations/florida/Fla-Admin-Code-Ann-R-5K-4-034"),
    ("9 NYCRR", "https://www.dec.ny.gov/regulations"),
    ("101.2", "https://www.ecfr.gov/current/title-21/part-101/section-101.2#p-101.2(c)(1)(ii)(B)(3)(iii)"),
    ("101.5", "https://www.ecfr.gov/current/title-21/chapter-I/subchapter-B/part-101/subpart-A/section-101.5"),
    ("101.9", "https://www.ecfr.gov/current/title-21/part-101#p-101.9(j)(15)(iii)"),
    ("101.", "https://www.ecfr.gov/current/title-21/part-101"),
]

FINDING_SECTIONS = ("label", "coa")


def url_for_reference(ref: Any) -> Optional[str]:
    if not ref or ref == "N/A":
        return None
    text = str(ref)
    for marker, url in REFERENCE_URLS:
        if marker in text:
            return url
    return None


def _annotate(findings: Any) -> None:
    if not isinstance(findings, list):
        return
    for item in findings:
        if isinstance(item, dict) and item.get("ref") and not item.get("url"):
            url = url_for_reference(item["ref"])
            if url:
                item["url"] = url


def add_reference_urls(result: Any) -> Any:
    """Annotate ``compliance_check[*].label`` and ``.coa`` findings in place."""
    if not isinstance(result, dict):
        return result
    checks = result.get("compliance_check")
    if isinstance(checks, list):
        for check in checks:
            if isinstance(check, dict):
                for section in FINDING_SECTIONS:
                    _annotate(check.get(section))
    return result


def count_issues(result: Any) -> int:
    output: Dict[str, Any] = result.get("output", {}) if isinstance(result, dict) else {}
    issues = output.get("issues") if isinstance(output, dict) else None
    return len(issues) if isinstance(issues, list) else 0
