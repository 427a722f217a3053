"""
Scheduled re-validation of registered sites.

The API process runs run_scheduled_checks periodically (see main.lifespan);
an external trigger can call it directly with the shared repository.
"""

import logging
from datetime import datetime, timezone

import httpx

from . import assembler
from .engine import run_local_checks
from .fetcher import client_scope
from .sites import compute_next_check, is_due
from .storage import Repository

logger = logging.getLogger(__name__)

SCHEDULED_CHECKS = ["structured_data", "indexing", "mobile"]


async def validate_site(site: dict, repo: Repository, client: httpx.AsyncClient | None = None) -> int:
    """Validate one site's root URL and refresh its check bookkeeping."""
    logger.info("Validating site: %s", site["site_id"])

    async with client_scope(client) as http:
        raw_issues = await run_local_checks(site["site_url"], SCHEDULED_CHECKS, http)

    issues = assembler.assign_ids(raw_issues)
    records = [assembler.to_record(issue, site["site_id"]) for issue in issues]
    if records:
        await repo.put_issues(records)

    now = datetime.now(timezone.utc)
    open_issues = sum(1 for r in records if r["status"] == "open")
    await repo.update_site_check(
        site["site_id"],
        last_check=now.isoformat().replace("+00:00", "Z"),
        next_check=compute_next_check(site["check_schedule"], now),
        open_issues=open_issues,
    )

    logger.info("Site %s validated: %d issues found", site["site_id"], len(issues))
    return len(issues)


async def run_scheduled_checks(repo: Repository, client: httpx.AsyncClient | None = None) -> list[str]:
    """Validate every due site; returns the ids of the sites that were checked."""
    sites = await repo.list_sites()
    due = [site for site in sites if is_due(site)]
    logger.info("Found %d sites due for validation", len(due))

    checked = []
    async with client_scope(client) as http:
        for site in due:
            try:
                await validate_site(site, repo, client=http)
                checked.append(site["site_id"])
            except Exception:
                logger.exception("Error validating site %s", site["site_id"])

    logger.info("Scheduled validation completed")
    return checked
