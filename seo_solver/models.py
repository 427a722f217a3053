"""
Shared data model: issue enumerations, the raw issue builder used by every
validator and by the GSC mapper, and the pydantic request/response bodies.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

CATEGORIES = ("structured_data", "indexing", "performance", "mobile")
SEVERITIES = ("error", "warning")

IssueCategory = Literal["structured_data", "indexing", "performance", "mobile"]
IssueSeverity = Literal["error", "warning"]
IssueStatus = Literal["open", "fixing", "fixed", "wontfix"]
CheckSchedule = Literal["daily", "weekly", "manual"]

# Each issue type belongs to exactly one category.
ISSUE_TYPES = {
    "missing_required_field": "structured_data",
    "missing_recommended_field": "structured_data",
    "invalid_field_value": "structured_data",
    "invalid_field_type": "structured_data",
    "missing_schema": "structured_data",
    "syntax_error": "structured_data",
    "duplicate_schema": "structured_data",
    "duplicate_without_canonical": "indexing",
    "conflicting_canonical": "indexing",
    "crawled_not_indexed": "indexing",
    "discovered_not_indexed": "indexing",
    "blocked_by_robots": "indexing",
    "noindex_tag": "indexing",
    "not_found_404": "indexing",
    "server_error_5xx": "indexing",
    "redirect_chain": "indexing",
    "redirect_loop": "indexing",
    "poor_lcp": "performance",
    "needs_improvement_lcp": "performance",
    "poor_inp": "performance",
    "needs_improvement_inp": "performance",
    "poor_cls": "performance",
    "needs_improvement_cls": "performance",
    "no_viewport": "mobile",
    "text_too_small": "mobile",
    "tap_targets_too_close": "mobile",
    "content_wider_than_screen": "mobile",
}


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def clean_details(details: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is absent; the details bag never stores None."""
    return {k: v for k, v in details.items() if v is not None}


def make_issue(
    url: str,
    type: str,
    severity: str,
    auto_fixable: bool,
    suggested_fix: str,
    detected_at: str | None = None,
    **details: Any,
) -> dict:
    """Build a raw issue (no id, no status) in the shape shared by all detection paths."""
    if type not in ISSUE_TYPES:
        raise ValueError(f"Unknown issue type: {type}")
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown severity: {severity}")
    return {
        "url": url,
        "category": ISSUE_TYPES[type],
        "type": type,
        "severity": severity,
        "details": clean_details(details),
        "auto_fixable": auto_fixable,
        "suggested_fix": suggested_fix,
        "detected_at": detected_at or utcnow(),
    }


def check_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError("Must be a valid HTTP or HTTPS URL")
    return value


# --- API bodies ---

class ValidationRequest(BaseModel):
    site_url: str
    sitemap_url: Optional[str] = None
    checks: list[IssueCategory] = Field(default_factory=lambda: list(CATEGORIES))
    max_urls: int = Field(default=50, ge=1)
    site_id: Optional[str] = None
    use_gsc: bool = True
    gsc_property: Optional[str] = None

    @field_validator("site_url")
    @classmethod
    def _check_site_url(cls, value: str) -> str:
        return check_http_url(value)

    @field_validator("sitemap_url")
    @classmethod
    def _check_sitemap_url(cls, value: Optional[str]) -> Optional[str]:
        return check_http_url(value) if value else value


class Issue(BaseModel):
    id: str
    url: str
    category: IssueCategory
    type: str
    severity: IssueSeverity
    status: Optional[IssueStatus] = None
    details: dict[str, Any] = Field(default_factory=dict)
    auto_fixable: bool
    suggested_fix: Optional[str] = None
    detected_at: str
    updated_at: Optional[str] = None


class ValidationSummary(BaseModel):
    total_issues: int
    errors: int
    warnings: int
    by_category: dict[str, int]


class ValidationResponse(BaseModel):
    validation_id: str
    status: Literal["processing", "completed", "failed"]
    site_url: str
    urls_checked: int
    started_at: str
    completed_at: Optional[str] = None
    summary: ValidationSummary
    issues: list[Issue]
    gsc_used: bool
    gsc_property: Optional[str] = None


class IssueListResponse(BaseModel):
    site_id: str
    returned: int
    next_cursor: Optional[str]
    issues: list[Issue]


class IssueUpdateRequest(BaseModel):
    status: IssueStatus


class IssueUpdateResponse(BaseModel):
    id: str
    status: IssueStatus
    updated_at: str


class SiteRegistrationRequest(BaseModel):
    site_url: str
    sitemap_url: Optional[str] = None
    gsc_property: Optional[str] = None
    check_schedule: CheckSchedule = "daily"
    notification_webhook: Optional[str] = None
    notification_email: Optional[str] = None

    @field_validator("site_url")
    @classmethod
    def _check_site_url(cls, value: str) -> str:
        return check_http_url(value)


class Site(BaseModel):
    site_id: str
    site_url: str
    sitemap_url: Optional[str] = None
    gsc_property: Optional[str] = None
    check_schedule: CheckSchedule
    notification_webhook: Optional[str] = None
    notification_email: Optional[str] = None
    last_check: Optional[str] = None
    next_check: Optional[str] = None
    open_issues: int = 0
    created_at: Optional[str] = None


class SiteRegistrationResponse(BaseModel):
    site_id: str
    site_url: str
    check_schedule: CheckSchedule
    next_check: Optional[str]
    created_at: str


class SiteListResponse(BaseModel):
    sites: list[Site]


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    implementation: str
