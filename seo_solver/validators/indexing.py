"""
Indexing validator.

Walks redirects by hand (to see chains and loops), then checks the final
response: terminal status codes first, then canonical, noindex and, for the
site root only, robots.txt.
"""

import logging
from urllib.parse import urljoin, urlparse

import httpx

from ..fetcher import USER_AGENT, client_scope, fetch_page, is_ok
from ..models import make_issue
from ..parser import parse_head

logger = logging.getLogger(__name__)

INDEXING_UA = f"{USER_AGENT} (Indexing Validator)"
MAX_HOPS = 10
BLOCKING_AGENTS = ("*", "googlebot")


def _is_redirect(fetch_result: dict) -> bool:
    status = fetch_result.get("status_code") or 0
    return 300 <= status < 400 and bool(fetch_result["headers"].get("location"))


def _resolve_location(base: str, location: str) -> str | None:
    try:
        return urljoin(base, location)
    except ValueError:
        logger.warning("Unparseable redirect location from %s: %r", base, location)
        return None


async def check_redirects(url: str, first_location: str, client: httpx.AsyncClient) -> dict | None:
    """Follow a redirect chain hop by hop; report a loop or a multi-hop chain.

    A location that cannot be parsed ends the chain.
    """
    current = _resolve_location(url, first_location)
    if current is None:
        return None
    hops = 1
    visited = {url}

    while hops < MAX_HOPS:
        if current in visited:
            return make_issue(
                url, "redirect_loop", "error", True,
                "Fix the redirect configuration to eliminate the loop",
                message="Redirect loop detected", loop_url=current, hops=hops,
            )
        visited.add(current)

        step = await fetch_page(current, user_agent=INDEXING_UA, follow_redirects=False, client=client)
        if step["error"] or not _is_redirect(step):
            break
        next_url = _resolve_location(current, step["headers"]["location"])
        if next_url is None:
            break
        current = next_url
        hops += 1

    if hops > 1:
        return make_issue(
            url, "redirect_chain", "warning", True,
            "Update redirects to point directly to the final destination",
            message=f"Redirect chain with {hops} hops", hops=hops,
        )
    return None


def _path(url: str) -> str:
    return urlparse(url).path.rstrip("/") or "/"


def check_canonical(canonical: str | None, url: str) -> dict | None:
    if not canonical:
        return make_issue(
            url, "duplicate_without_canonical", "error", True,
            f'Add <link rel="canonical" href="{url}"> to the page head',
            message="No canonical tag found on page",
        )

    # Host or scheme differences (www, http) are tolerated; a different page is not.
    resolved = urljoin(url, canonical)
    if _path(resolved) != _path(url):
        return make_issue(
            url, "conflicting_canonical", "error", True,
            "Update the canonical tag to point to the correct URL",
            message="Canonical URL points to a different page",
            canonical_url=canonical, current_url=url,
        )
    return None


def check_noindex(meta_robots: str | None, headers: dict, url: str) -> dict | None:
    if meta_robots and "noindex" in meta_robots.lower():
        return make_issue(
            url, "noindex_tag", "warning", False,
            "Remove the noindex directive if you want this page to be indexed",
            message="Page has noindex meta tag", robots_content=meta_robots,
        )

    x_robots = headers.get("x-robots-tag")
    if x_robots and "noindex" in x_robots.lower():
        return make_issue(
            url, "noindex_tag", "warning", False,
            "Remove the X-Robots-Tag header if you want this page to be indexed",
            message="Page has noindex X-Robots-Tag header", header_value=x_robots,
        )
    return None


def find_site_block(robots_txt: str) -> str | None:
    """Return the user agent whose group disallows the whole site, if any."""
    agents: list[str] = []
    in_rules = False

    for line in robots_txt.splitlines():
        line = line.split("#", 1)[0].strip()
        if ":" not in line:
            continue
        key, value = (part.strip() for part in line.split(":", 1))
        key = key.lower()

        if key == "user-agent":
            if in_rules:
                agents, in_rules = [], False
            agents.append(value.lower())
        elif key in ("disallow", "allow"):
            in_rules = True
            if key == "disallow" and value == "/":
                for agent in agents:
                    if agent in BLOCKING_AGENTS:
                        return agent
    return None


async def check_robots_txt(url: str, client: httpx.AsyncClient) -> dict | None:
    parsed = urlparse(url)
    robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

    fetch_result = await fetch_page(robots_url, user_agent=INDEXING_UA, client=client)
    if not is_ok(fetch_result):
        return None

    agent = find_site_block(fetch_result["html"] or "")
    if agent is None:
        return None
    return make_issue(
        url, "blocked_by_robots", "error", True,
        "Update robots.txt to allow crawling of desired pages",
        message="robots.txt blocks crawling of the entire site", user_agent=agent,
    )


async def check_final_response(response: dict, url: str, client: httpx.AsyncClient) -> list[dict]:
    status = response["status_code"]

    if status == 404:
        return [make_issue(
            url, "not_found_404", "error", False,
            "Either restore the page content or set up a redirect to a relevant page",
            message="Page returns 404 Not Found", status_code=404,
        )]
    if status >= 500:
        return [make_issue(
            url, "server_error_5xx", "error", False,
            "Fix the server error. Check server logs for details.",
            message=f"Page returns server error {status}", status_code=status,
        )]
    if not 200 <= status < 300:
        return []

    issues = []
    head = parse_head(response["html"] or "", base_url=url)

    canonical_issue = check_canonical(head["canonical"], url)
    if canonical_issue:
        issues.append(canonical_issue)

    noindex_issue = check_noindex(head["meta_robots"], response["headers"], url)
    if noindex_issue:
        issues.append(noindex_issue)

    if urlparse(url).path in ("", "/"):
        robots_issue = await check_robots_txt(url, client)
        if robots_issue:
            issues.append(robots_issue)

    return issues


async def validate(url: str, client: httpx.AsyncClient | None = None) -> list[dict]:
    async with client_scope(client) as http:
        first = await fetch_page(url, user_agent=INDEXING_UA, follow_redirects=False, client=http)
        if first["error"]:
            return []

        issues = []
        final = first
        if _is_redirect(first):
            redirect_issue = await check_redirects(url, first["headers"]["location"], http)
            if redirect_issue:
                issues.append(redirect_issue)
            final = await fetch_page(url, user_agent=INDEXING_UA, follow_redirects=True, client=http)
            if final["error"]:
                return issues

        try:
            issues.extend(await check_final_response(final, url, http))
        except Exception:
            logger.exception("Indexing content checks failed for %s", url)
        return issues
