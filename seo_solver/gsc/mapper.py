"""
Map a URL Inspection API result onto the issue shape produced by the local
validators.

Classification is driven by the ordered rule tables below (first match
wins). They match on Google's free-text coverage states and issue messages,
so a change in Google's wording can silently change the classification.
"""

import re

from ..models import make_issue, utcnow

SOURCE = "gsc"

# (keywords, issue type, severity, message, suggested fix)
# Applied to the lower-cased coverageState when the index verdict is FAIL.
COVERAGE_RULES = [
    (("noindex",), "noindex_tag", "error",
     "Page is marked as noindex",
     "Remove the noindex directive from the page if you want it indexed."),
    (("blocked",), "blocked_by_robots", "error",
     "Page is blocked by robots.txt",
     "Update robots.txt to allow crawling of this page."),
    (("not found", "404"), "not_found_404", "error",
     "Page returns 404 Not Found",
     "Fix the page URL or set up a redirect to the correct location."),
    (("server error", "5xx"), "server_error_5xx", "error",
     "Page returns server error",
     "Fix the server error causing the 5xx response."),
    (("redirect",), "redirect_chain", "warning",
     "Page has redirect issues",
     "Simplify redirect chains and ensure redirects point to the final destination."),
]

MOBILE_ISSUE_TYPES = {
    "MOBILE_FRIENDLY_RULE_VIEWPORT_NOT_CONFIGURED": "no_viewport",
    "MOBILE_FRIENDLY_RULE_CONTENT_NOT_SIZED_TO_VIEWPORT": "content_wider_than_screen",
    "MOBILE_FRIENDLY_RULE_USE_READABLE_FONT_SIZES": "text_too_small",
    "MOBILE_FRIENDLY_RULE_TAP_TARGETS_TOO_CLOSE": "tap_targets_too_close",
}
# Unrecognized mobile issue types fall back to no_viewport (an approximation).
DEFAULT_MOBILE_ISSUE_TYPE = "no_viewport"

MOBILE_FIXES = {
    "no_viewport": 'Add <meta name="viewport" content="width=device-width, initial-scale=1"> to the page head.',
    "content_wider_than_screen": "Use responsive CSS and avoid fixed-width elements wider than the viewport.",
    "text_too_small": "Use a minimum font size of 16px for body text on mobile.",
    "tap_targets_too_close": "Ensure tap targets are at least 48x48px with adequate spacing.",
}

# (keyword, issue type), applied to the lower-cased rich result issue message.
RICH_RESULT_RULES = [
    ("invalid", "invalid_field_value"),
    ("missing", "missing_required_field"),
]

QUOTED = re.compile(r"[\"']([^\"']+)[\"']")


def _severity(gsc_severity: str | None) -> str:
    return "error" if gsc_severity == "ERROR" else "warning"


def classify_coverage(coverage_state: str | None) -> tuple | None:
    state = (coverage_state or "").lower()
    for keywords, *rest in COVERAGE_RULES:
        if any(k in state for k in keywords):
            return tuple(rest)
    return None


def classify_rich_result(message: str | None, gsc_severity: str | None) -> str:
    text = (message or "").lower()
    for keyword, issue_type in RICH_RESULT_RULES:
        if keyword in text:
            return issue_type
    return "missing_recommended_field" if gsc_severity == "WARNING" else "missing_required_field"


def map_index_status(url: str, index_status: dict, now: str) -> list[dict]:
    issues = []
    verdict = index_status.get("verdict")
    coverage_state = index_status.get("coverageState")

    if verdict == "FAIL":
        rule = classify_coverage(coverage_state)
        if rule:
            issue_type, severity, message, fix = rule
        else:
            issue_type, severity, fix = (
                "crawled_not_indexed", "error",
                "Review the page content and ensure it provides value for indexing.",
            )
            message = f"Page not indexed: {coverage_state or 'Unknown reason'}"
        issues.append(make_issue(
            url, issue_type, severity, False, fix,
            detected_at=now, message=message, source=SOURCE,
            coverage_state=coverage_state,
            indexing_state=index_status.get("indexingState"),
            robots_txt_state=index_status.get("robotsTxtState"),
            page_fetch_state=index_status.get("pageFetchState"),
        ))

    google_canonical = index_status.get("googleCanonical")
    user_canonical = index_status.get("userCanonical")

    if google_canonical and user_canonical:
        if google_canonical != user_canonical:
            issues.append(make_issue(
                url, "conflicting_canonical", "warning", False,
                f"Google is using {google_canonical} as the canonical instead of your "
                f"specified {user_canonical}. Review your canonical tags.",
                detected_at=now, message="Google selected a different canonical than specified",
                source=SOURCE, google_canonical=google_canonical, user_canonical=user_canonical,
            ))
    elif not user_canonical and verdict != "PASS":
        issues.append(make_issue(
            url, "duplicate_without_canonical", "warning", False,
            f'Add a canonical tag: <link rel="canonical" href="{url}">',
            detected_at=now, message="No canonical tag specified",
            source=SOURCE, google_canonical=google_canonical,
        ))

    return issues


def map_mobile_usability(url: str, mobile: dict, now: str) -> list[dict]:
    if mobile.get("verdict") == "PASS":
        return []

    issues = []
    for item in mobile.get("issues") or []:
        gsc_type = item.get("issueType")
        issue_type = MOBILE_ISSUE_TYPES.get(gsc_type, DEFAULT_MOBILE_ISSUE_TYPE)
        issues.append(make_issue(
            url, issue_type, _severity(item.get("severity")), False,
            MOBILE_FIXES[issue_type],
            detected_at=now,
            message=item.get("message") or f"Mobile usability issue: {gsc_type}",
            source=SOURCE, issue_type=gsc_type, gsc_severity=item.get("severity"),
        ))
    return issues


def structured_data_fix(schema_type: str, message: str) -> str:
    match = QUOTED.search(message)
    field = match.group(1) if match else "the required field"
    return (
        f"Add or fix {field} in your {schema_type} structured data. See "
        "https://developers.google.com/search/docs/appearance/structured-data for schema requirements."
    )


def map_rich_results(url: str, rich: dict, now: str) -> list[dict]:
    if rich.get("verdict") == "PASS":
        return []

    issues = []
    for detected in rich.get("detectedItems") or []:
        schema_type = detected.get("richResultType")
        for item in detected.get("items") or []:
            for problem in item.get("issues") or []:
                message = problem.get("issueMessage")
                gsc_severity = problem.get("severity")
                issues.append(make_issue(
                    url, classify_rich_result(message, gsc_severity), _severity(gsc_severity), False,
                    structured_data_fix(schema_type or "schema", message or ""),
                    detected_at=now,
                    message=message or f"Structured data issue in {schema_type}",
                    source=SOURCE, schema_type=schema_type, item_name=item.get("name"),
                    gsc_message=message, gsc_severity=gsc_severity,
                ))
    return issues


def map_inspection_result(url: str, result: dict) -> list[dict]:
    """Pure mapping of an inspectionResult object to raw issues."""
    now = utcnow()
    issues = []
    if result.get("indexStatusResult"):
        issues.extend(map_index_status(url, result["indexStatusResult"], now))
    if result.get("mobileUsabilityResult"):
        issues.extend(map_mobile_usability(url, result["mobileUsabilityResult"], now))
    if result.get("richResultsResult"):
        issues.extend(map_rich_results(url, result["richResultsResult"], now))
    return issues
