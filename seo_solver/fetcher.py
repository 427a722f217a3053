"""
Fetch a URL with a declared user agent and optional redirect following.
Network failures never raise; they come back in the result's "error" key.
"""

import logging
from contextlib import asynccontextmanager

import httpx

from .config import get_settings

logger = logging.getLogger(__name__)

USER_AGENT = "SEO-Solver/1.0"

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; Pixel 4) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)

HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


@asynccontextmanager
async def client_scope(client: httpx.AsyncClient | None = None):
    """Yield the given client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=get_settings().fetch_timeout) as owned:
        yield owned


async def fetch_page(
    url: str,
    user_agent: str = USER_AGENT,
    follow_redirects: bool = True,
    client: httpx.AsyncClient | None = None,
) -> dict:
    result = {
        "url": url,
        "final_url": url,
        "status_code": None,
        "html": None,
        "headers": {},
        "redirect_chain": [],
        "error": None,
    }

    headers = {**HEADERS, "User-Agent": user_agent}
    try:
        async with client_scope(client) as http:
            resp = await http.get(url, headers=headers, follow_redirects=follow_redirects)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("Fetch failed for %s: %s", url, e)
        result["error"] = str(e) or e.__class__.__name__
        return result

    result["final_url"] = str(resp.url)
    result["status_code"] = resp.status_code
    result["html"] = resp.text
    result["headers"] = {k.lower(): v for k, v in resp.headers.items()}
    result["redirect_chain"] = [str(r.url) for r in resp.history]
    return result


def is_ok(fetch_result: dict) -> bool:
    status = fetch_result.get("status_code")
    return not fetch_result.get("error") and status is not None and 200 <= status < 300
