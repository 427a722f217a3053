"""
Validation engine: selects URLs, runs the GSC or local validator path for
each one, assembles the issues and persists them.
"""

import asyncio
import logging
from urllib.parse import urlparse

import httpx

from . import assembler
from .fetcher import client_scope, fetch_page, is_ok
from .gsc import client as gsc_client
from .gsc.mapper import map_inspection_result
from .models import CATEGORIES, utcnow
from .parser import extract_sitemap_urls
from .sites import extract_site_id
from .storage import Repository
from .validators import indexing, mobile, performance, structured_data

logger = logging.getLogger(__name__)

DEFAULT_MAX_URLS = 50
MAX_URLS_LIMIT = 500

VALIDATORS = {
    "structured_data": structured_data.validate,
    "indexing": indexing.validate,
    "performance": performance.validate,
    "mobile": mobile.validate,
}


async def _sitemap_locs(sitemap_url: str, client: httpx.AsyncClient) -> list[str]:
    fetch_result = await fetch_page(sitemap_url, client=client)
    if not is_ok(fetch_result):
        logger.warning("Sitemap %s could not be fetched", sitemap_url)
        return []
    return extract_sitemap_urls(fetch_result["html"] or "")


async def discover_urls(
    site_url: str, sitemap_url: str | None, max_urls: int, client: httpx.AsyncClient,
) -> list[str]:
    """site_url first, then same-host sitemap entries, de-duplicated and capped."""
    urls = [site_url]
    if sitemap_url:
        host = urlparse(site_url).hostname
        locs = await _sitemap_locs(sitemap_url, client)
        for loc in locs:
            if len(urls) >= max_urls:
                break
            if loc.endswith(".xml"):
                # Sitemap index entry; follow one level down.
                locs_below = await _sitemap_locs(loc, client)
            else:
                locs_below = [loc]
            for candidate in locs_below:
                if urlparse(candidate).hostname == host and candidate not in urls:
                    urls.append(candidate)
    return urls[:max_urls]


async def run_local_checks(url: str, checks: list[str], client: httpx.AsyncClient) -> list[dict]:
    """Run the selected validators for one URL concurrently.

    A validator that raises contributes no issues; the others still count.
    """
    results = await asyncio.gather(
        *(VALIDATORS[check](url, client=client) for check in checks), return_exceptions=True,
    )
    issues = []
    for check, result in zip(checks, results):
        if isinstance(result, Exception):
            logger.error("%s validator failed for %s", check, url, exc_info=result)
            continue
        if isinstance(result, BaseException):
            raise result
        issues.extend(result)
    return issues


async def run_gsc_checks(
    repo: Repository,
    site_id: str,
    url: str,
    gsc_property: str,
    checks: list[str],
    client: httpx.AsyncClient,
) -> list[dict] | None:
    """Issues from the URL Inspection API, or None when the inspection failed."""
    response = await gsc_client.inspect_url(repo, site_id, url, gsc_property, client=client)
    if not response or not response.get("inspectionResult"):
        return None
    return [
        issue for issue in map_inspection_result(url, response["inspectionResult"])
        if issue["category"] in checks
    ]


async def run_validation(request: dict, repo: Repository, client: httpx.AsyncClient | None = None) -> dict:
    started_at = utcnow()
    site_url = request["site_url"]
    requested = request.get("checks")
    # An explicit empty list selects no checks.
    checks = list(dict.fromkeys(CATEGORIES if requested is None else requested))
    max_urls = min(request.get("max_urls") or DEFAULT_MAX_URLS, MAX_URLS_LIMIT)
    site_id = request.get("site_id") or extract_site_id(site_url)

    raw_issues: list[dict] = []
    urls_checked = 0
    gsc_used = False
    gsc_property_used = None

    async with client_scope(client) as http:
        urls = await discover_urls(site_url, request.get("sitemap_url"), max_urls, http) if checks else []

        token = await repo.get_google_token(site_id) if request.get("use_gsc", True) else None

        if token:
            gsc_property = request.get("gsc_property") or site_url
            for url in urls:
                gsc_issues = await run_gsc_checks(repo, site_id, url, gsc_property, checks, http)
                if gsc_issues is not None:
                    gsc_used = True
                    gsc_property_used = gsc_property
                    raw_issues.extend(gsc_issues)
                urls_checked += 1

            # The URL Inspection API has no performance data.
            if "performance" in checks:
                for url in urls:
                    raw_issues.extend(await performance.validate(url, client=http))
        else:
            for url in urls:
                raw_issues.extend(await run_local_checks(url, checks, http))
                urls_checked += 1

    issues = assembler.assign_ids(raw_issues)
    if issues:
        await repo.put_issues([assembler.to_record(issue, site_id) for issue in issues])

    logger.info(
        "Validated %s (%d urls, gsc=%s): %d issues", site_url, urls_checked, gsc_used, len(issues),
    )

    response = {
        "validation_id": assembler.generate_validation_id(),
        "status": "completed",
        "site_url": site_url,
        "urls_checked": urls_checked,
        "started_at": started_at,
        "completed_at": utcnow(),
        "summary": assembler.build_summary(issues),
        "issues": issues,
        "gsc_used": gsc_used,
    }
    if gsc_property_used:
        response["gsc_property"] = gsc_property_used
    return response
