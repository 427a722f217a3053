"""Structured data (JSON-LD) validator."""

import logging
import re

import httpx

from ..fetcher import USER_AGENT, fetch_page, is_ok
from ..models import make_issue, utcnow
from ..parser import JsonLdSyntaxError, extract_json_ld_blocks, flatten_json_ld

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "VideoObject": ["name", "thumbnailUrl", "uploadDate"],
    "Product": ["name", "image"],
    "Article": ["headline", "image", "datePublished", "author"],
    "FAQPage": ["mainEntity"],
    "BreadcrumbList": ["itemListElement"],
    "Organization": ["name", "url"],
    "LocalBusiness": ["name", "address"],
}

RECOMMENDED_FIELDS = {
    "VideoObject": ["description", "duration", "contentUrl", "embedUrl"],
    "Product": ["description", "brand", "sku", "review", "aggregateRating", "offers"],
    "Article": ["description", "dateModified", "publisher"],
}

DATE_FIELDS = ["datePublished", "dateModified", "uploadDate"]
URL_FIELDS = ["url", "image", "thumbnailUrl", "contentUrl"]

ISO_DATE = re.compile(
    r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(\.\d{3})?(Z|[+-]\d{2}:\d{2})?)?$"
)


def has_value(obj: dict, field: str) -> bool:
    value = obj.get(field)
    return value is not None and value != ""


def resolve_url_value(value):
    """Unwrap the first element of an array, or an object's url sub-field."""
    if isinstance(value, list):
        return value[0] if value else None
    if isinstance(value, dict) and "url" in value:
        return value["url"]
    return value


def _schema_type(obj: dict) -> str:
    t = obj.get("@type") or "Unknown"
    if isinstance(t, list):
        t = t[0] if t else "Unknown"
    return str(t)


def validate_object(obj: dict, url: str, now: str) -> list[dict]:
    """Field-level checks for one JSON-LD object."""
    issues = []
    schema_type = _schema_type(obj)

    for field in REQUIRED_FIELDS.get(schema_type, []):
        if not has_value(obj, field):
            issues.append(make_issue(
                url, "missing_required_field", "error", True,
                f"Add '{field}' field to the {schema_type} schema",
                detected_at=now,
                schema_type=schema_type, field=field,
                message=f"Required field '{field}' is missing from {schema_type} schema",
            ))

    for field in RECOMMENDED_FIELDS.get(schema_type, []):
        if not has_value(obj, field):
            issues.append(make_issue(
                url, "missing_recommended_field", "warning", True,
                f"Consider adding '{field}' field to improve rich result display",
                detected_at=now,
                schema_type=schema_type, field=field,
                message=f"Recommended field '{field}' is missing from {schema_type} schema",
            ))

    for field in DATE_FIELDS:
        value = obj.get(field)
        if isinstance(value, str) and value and not ISO_DATE.match(value):
            issues.append(make_issue(
                url, "invalid_field_value", "error", True,
                f"Convert '{field}' to ISO 8601 format (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ)",
                detected_at=now,
                schema_type=schema_type, field=field,
                message=f"Field '{field}' has invalid date format",
                expected="ISO 8601 format (e.g., 2025-01-04T10:00:00Z)",
                actual=value,
            ))

    for field in URL_FIELDS:
        if not has_value(obj, field):
            continue
        value = resolve_url_value(obj[field])
        if isinstance(value, str) and value.startswith("/"):
            issues.append(make_issue(
                url, "invalid_field_value", "error", True,
                f"Convert '{field}' to an absolute URL (e.g., https://example.com{value})",
                detected_at=now,
                schema_type=schema_type, field=field,
                message=f"Field '{field}' has relative URL",
                expected="Absolute URL",
                actual=value,
            ))

    return issues


def analyze_html(html: str, url: str) -> list[dict]:
    now = utcnow()
    blocks = extract_json_ld_blocks(html)

    if not blocks:
        return [make_issue(
            url, "missing_schema", "error", False,
            "Add JSON-LD structured data to the page. Common types include "
            "Article, Product, Organization, or BreadcrumbList.",
            detected_at=now,
            message="No JSON-LD structured data found on page",
        )]

    issues = []
    for obj in flatten_json_ld(blocks):
        if isinstance(obj, JsonLdSyntaxError):
            issues.append(make_issue(
                url, "syntax_error", "error", True,
                "Fix JSON syntax errors. Generate JSON-LD with a JSON serializer "
                "instead of string templates.",
                detected_at=now,
                message="JSON-LD has syntax errors",
                error=obj.error,
            ))
        elif isinstance(obj, dict):
            issues.extend(validate_object(obj, url, now))
    return issues


async def validate(url: str, client: httpx.AsyncClient | None = None) -> list[dict]:
    # HTTP-level failures belong to the indexing validator.
    fetch_result = await fetch_page(
        url, user_agent=f"{USER_AGENT} (Structured Data Validator)", client=client,
    )
    if not is_ok(fetch_result):
        return []
    try:
        return analyze_html(fetch_result["html"] or "", url)
    except Exception:
        logger.exception("Structured data validation failed for %s", url)
        return []
