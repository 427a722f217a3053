"""
Performance validator backed by the PageSpeed Insights API.

Core Web Vitals thresholds: a value above "good" is a warning, above
"needs improvement" an error. Boundaries are inclusive on the good side.
"""

import logging

import httpx

from ..config import get_settings
from ..fetcher import client_scope
from ..models import make_issue, utcnow

logger = logging.getLogger(__name__)

PAGESPEED_API_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

# metric: (good, needs_improvement, unit)
THRESHOLDS = {
    "lcp": (2.5, 4.0, "seconds"),
    "inp": (200, 500, "milliseconds"),
    "cls": (0.1, 0.25, None),
}

LABELS = {
    "lcp": "Largest Contentful Paint",
    "inp": "Interaction to Next Paint",
    "cls": "Cumulative Layout Shift",
}

FIXES = {
    "poor_lcp": "Optimize the largest contentful element. Consider: lazy loading below-fold images, "
                "using WebP/AVIF format, adding width/height attributes, preloading critical resources.",
    "needs_improvement_lcp": "Optimize the largest contentful element to improve LCP below 2.5 seconds.",
    "poor_inp": "Reduce JavaScript execution time. Consider: code splitting, deferring non-critical "
                "scripts, breaking up long tasks.",
    "needs_improvement_inp": "Optimize interaction responsiveness to improve INP below 200ms.",
    "poor_cls": "Reduce layout shifts by: adding width/height to images, reserving space for dynamic "
                "content, avoiding inserting content above existing content.",
    "needs_improvement_cls": "Reduce layout shifts to improve CLS below 0.1.",
}


def extract_metrics(data: dict) -> dict:
    """LCP in seconds, total blocking time (INP proxy) in ms, CLS unitless."""
    if not isinstance(data, dict):
        return {}
    audits = (data.get("lighthouseResult") or {}).get("audits") or {}
    metrics = {}

    lcp = (audits.get("largest-contentful-paint") or {}).get("numericValue")
    if lcp is not None:
        metrics["lcp"] = lcp / 1000

    tbt = (audits.get("total-blocking-time") or {}).get("numericValue")
    if tbt is not None:
        metrics["inp"] = tbt

    cls = (audits.get("cumulative-layout-shift") or {}).get("numericValue")
    if cls is not None:
        metrics["cls"] = cls

    return metrics


def evaluate(metrics: dict, url: str) -> list[dict]:
    now = utcnow()
    issues = []

    for metric, (good, needs_improvement, unit) in THRESHOLDS.items():
        value = metrics.get(metric)
        if value is None:
            continue

        if value > needs_improvement:
            type, severity, threshold = f"poor_{metric}", "error", needs_improvement
            message = f"{LABELS[metric]} is too slow" if metric != "cls" else f"{LABELS[metric]} is too high"
        elif value > good:
            type, severity, threshold = f"needs_improvement_{metric}", "warning", good
            message = f"{LABELS[metric]} needs improvement"
        else:
            continue

        issues.append(make_issue(
            url, type, severity, False, FIXES[type],
            detected_at=now,
            message=message, threshold=threshold, value=value, unit=unit,
        ))

    return issues


async def fetch_metrics(url: str, api_key: str, client: httpx.AsyncClient | None = None) -> dict | None:
    params = {
        "url": url,
        "key": api_key,
        "strategy": "mobile",
        "category": "performance",
    }
    try:
        async with client_scope(client) as http:
            resp = await http.get(PAGESPEED_API_URL, params=params, headers={"Accept": "application/json"})
        if resp.status_code != 200:
            logger.warning("PageSpeed API error for %s: %s", url, resp.status_code)
            return None
        return extract_metrics(resp.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Error fetching PageSpeed metrics for %s: %s", url, e)
        return None


async def validate(url: str, client: httpx.AsyncClient | None = None) -> list[dict]:
    api_key = get_settings().pagespeed_api_key
    if not api_key:
        logger.info("PageSpeed API key not configured, skipping performance validation")
        return []

    metrics = await fetch_metrics(url, api_key, client=client)
    if not metrics:
        return []
    return evaluate(metrics, url)
