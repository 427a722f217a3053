"""
Search Console API client.

Access tokens are read from the repository before each call and refreshed in
place when expired (the stored refresh token is kept).
"""

import asyncio
import logging

import httpx

from ..fetcher import client_scope
from ..models import utcnow
from ..storage import Repository
from . import oauth

logger = logging.getLogger(__name__)

GSC_API_BASE = "https://www.googleapis.com/webmasters/v3"
SEARCH_CONSOLE_API_BASE = "https://searchconsole.googleapis.com/v1"

# Serializes refreshes of one site's token inside this process.
_refresh_locks: dict[str, asyncio.Lock] = {}


async def get_valid_access_token(
    repo: Repository, site_id: str, client: httpx.AsyncClient | None = None,
) -> str | None:
    record = await repo.get_google_token(site_id)
    if not record:
        return None
    if not oauth.is_token_expired(record.get("expires_at", "")):
        return record["access_token"]

    lock = _refresh_locks.setdefault(site_id, asyncio.Lock())
    async with lock:
        # Another request may have refreshed while we waited.
        record = await repo.get_google_token(site_id)
        if not record:
            return None
        if not oauth.is_token_expired(record.get("expires_at", "")):
            return record["access_token"]

        if not record.get("refresh_token"):
            logger.error("Token for %s expired and no refresh token is available", site_id)
            return None

        try:
            tokens = await oauth.refresh_access_token(record["refresh_token"], client=client)
        except (oauth.TokenExchangeError, oauth.OAuthConfigError) as e:
            logger.error("Failed to refresh token for %s: %s", site_id, e)
            return None

        record.update(
            access_token=tokens["access_token"],
            expires_at=oauth.calculate_expires_at(tokens.get("expires_in", 3600)),
            updated_at=utcnow(),
        )
        await repo.put_google_token(record)
        return record["access_token"]


async def _authorized_request(
    repo: Repository,
    site_id: str,
    method: str,
    url: str,
    client: httpx.AsyncClient | None,
    **kwargs,
) -> dict | None:
    async with client_scope(client) as http:
        access_token = await get_valid_access_token(repo, site_id, client=http)
        if not access_token:
            return None

        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            resp = await http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Search Console request failed: %s %s: %s", method, url, e)
            return None

    if resp.status_code != 200:
        logger.warning("Search Console returned %s for %s: %s", resp.status_code, url, resp.text[:200])
        return None
    try:
        return resp.json()
    except ValueError:
        logger.warning("Search Console returned invalid JSON for %s", url)
        return None


async def list_properties(repo: Repository, site_id: str, client: httpx.AsyncClient | None = None) -> dict | None:
    return await _authorized_request(repo, site_id, "GET", f"{GSC_API_BASE}/sites", client)


async def inspect_url(
    repo: Repository,
    site_id: str,
    inspection_url: str,
    site_url: str,
    client: httpx.AsyncClient | None = None,
) -> dict | None:
    """Call the URL Inspection API; returns the raw response body or None."""
    return await _authorized_request(
        repo, site_id, "POST", f"{SEARCH_CONSOLE_API_BASE}/urlInspection/index:inspect", client,
        json={"inspectionUrl": inspection_url, "siteUrl": site_url},
    )
