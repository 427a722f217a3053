"""
SEO Solver: FastAPI backend

Endpoints:
  POST  /validate                   Run validation checks against a site
  GET   /sites/{site_id}/issues     List stored issues (filters + cursor)
  PATCH /issues/{issue_id}          Update an issue's status
  POST  /sites                      Register a site for scheduled checks
  GET   /sites                      List registered sites
  GET   /auth/google                Start the Search Console OAuth flow
  GET   /auth/google/callback       OAuth redirect target
  GET   /gsc/properties             List connected Search Console properties
  GET   /gsc/inspect                Inspect one URL through Search Console
  GET   /health                     Health check
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.responses import RedirectResponse

from . import errors
from .assembler import from_record
from .config import get_settings
from .engine import run_validation
from .gsc import client as gsc_client
from .gsc import oauth
from .gsc.mapper import map_inspection_result
from .models import (
    HealthResponse,
    IssueCategory,
    IssueListResponse,
    IssueSeverity,
    IssueStatus,
    IssueUpdateRequest,
    IssueUpdateResponse,
    SiteListResponse,
    SiteRegistrationRequest,
    SiteRegistrationResponse,
    ValidationRequest,
    ValidationResponse,
    utcnow,
)
from .ratelimit import rate_limit
from .scheduler import run_scheduled_checks
from .sites import build_site
from .storage import MemoryStore, Repository

VERSION = "1.0.0"
IMPLEMENTATION = "python-fastapi"
DEFAULT_TOKEN_SITE_ID = "default"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _scheduler_loop(app: FastAPI, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_scheduled_checks(app.state.repository, client=app.state.http_client)
        except Exception:
            logger.exception("Scheduled validation run failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    settings = get_settings()
    if not settings.pagespeed_api_key:
        logger.warning("PAGESPEED_API_KEY not set. Performance checks will be skipped.")
    if not (settings.google_client_id and settings.google_client_secret and settings.google_redirect_uri):
        logger.warning("Google OAuth is not configured. Search Console features are unavailable.")

    task = None
    if settings.scheduler_interval > 0:
        task = asyncio.create_task(_scheduler_loop(app, settings.scheduler_interval))
    yield
    # Shutdown
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


app = FastAPI(
    title="SEO Solver",
    version=VERSION,
    lifespan=lifespan,
)
app.state.repository = Repository(MemoryStore())
app.state.http_client = None
errors.add_exception_handlers(app)


# --- dependencies ---

def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_http_client(request: Request):
    return request.app.state.http_client


async def require_api_key(x_api_key: str = Header(default="")) -> None:
    secret = get_settings().api_secret
    if secret and x_api_key != secret:
        raise errors.Unauthorized("Invalid API key")


def _reject_private_host(url: str) -> None:
    hostname = urlparse(url).hostname or ""
    blocked = ["localhost", "127.0.0.1", "0.0.0.0", "::1"]
    if hostname in blocked or hostname.startswith(("10.", "192.168.", "172.16.")):
        raise errors.ValidationError(
            "Private/local URLs not allowed", {"field": "site_url"},
        )


# --- routes ---

@app.get("/health", response_model=HealthResponse)
async def health():
    return {"status": "healthy", "version": VERSION, "implementation": IMPLEMENTATION}


@app.post(
    "/validate",
    response_model=ValidationResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_api_key)],
)
async def validate(
    req: ValidationRequest,
    request: Request,
    repo: Repository = Depends(get_repository),
    http_client=Depends(get_http_client),
):
    client_key = request.client.host if request.client else "anonymous"
    rate_limit(f"validate:{client_key}", get_settings().rate_limit_per_minute)

    _reject_private_host(req.site_url)
    return await run_validation(req.model_dump(), repo, client=http_client)


@app.get(
    "/sites/{site_id}/issues",
    response_model=IssueListResponse,
    dependencies=[Depends(require_api_key)],
)
async def list_issues(
    site_id: str,
    status: Optional[IssueStatus] = None,
    category: Optional[IssueCategory] = None,
    severity: Optional[IssueSeverity] = None,
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[str] = None,
    repo: Repository = Depends(get_repository),
):
    records, next_cursor = await repo.query_issues(
        site_id, status=status, category=category, severity=severity, limit=limit, cursor=cursor,
    )
    issues = [from_record(r) for r in records]
    return {"site_id": site_id, "returned": len(issues), "next_cursor": next_cursor, "issues": issues}


@app.patch(
    "/issues/{issue_id}",
    response_model=IssueUpdateResponse,
    dependencies=[Depends(require_api_key)],
)
async def update_issue(
    issue_id: str,
    req: IssueUpdateRequest,
    repo: Repository = Depends(get_repository),
):
    existing = await repo.find_issue(issue_id)
    if not existing:
        raise errors.NotFound(f"Issue {issue_id} not found")

    updated = await repo.update_issue_status(existing["site_id"], issue_id, req.status)
    if not updated:
        raise errors.NotFound(f"Issue {issue_id} not found")
    return {"id": issue_id, "status": updated["status"], "updated_at": updated["updated_at"]}


@app.post(
    "/sites",
    response_model=SiteRegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
)
async def register_site(req: SiteRegistrationRequest, repo: Repository = Depends(get_repository)):
    site = build_site(req.model_dump())
    await repo.put_site(site)
    return site


@app.get("/sites", response_model=SiteListResponse, dependencies=[Depends(require_api_key)])
async def list_sites(repo: Repository = Depends(get_repository)):
    return {"sites": await repo.list_sites()}


@app.get("/auth/google")
async def auth_google(site_id: Optional[str] = None, repo: Repository = Depends(get_repository)):
    state = oauth.generate_state()
    auth_url = oauth.generate_auth_url(state)
    await repo.put_state_token(state, {
        "site_id": site_id,
        "created_at": utcnow(),
        "expires_at": oauth.state_expires_at(),
    })
    return RedirectResponse(auth_url, status_code=status.HTTP_302_FOUND)


@app.get("/auth/google/callback")
async def auth_google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    repo: Repository = Depends(get_repository),
    http_client=Depends(get_http_client),
):
    if error:
        raise errors.OAuthError(f"Google OAuth error: {error}")
    if not code or not state:
        raise errors.ValidationError("Missing code or state parameter")

    state_data = await repo.get_state_token(state)
    if not state_data:
        raise errors.OAuthError("Invalid or expired state parameter", code="INVALID_STATE")
    await repo.delete_state_token(state)
    if oauth.is_expired(state_data["expires_at"]):
        raise errors.OAuthError("State parameter has expired", code="EXPIRED_STATE")

    try:
        tokens = await oauth.exchange_code_for_tokens(code, client=http_client)
    except oauth.TokenExchangeError as e:
        logger.error("OAuth code exchange failed: %s", e)
        raise errors.UpstreamError("Failed to exchange authorization code")

    if not tokens.get("refresh_token"):
        logger.warning("No refresh token received - user may have already authorized this app")

    site_id = state_data.get("site_id") or DEFAULT_TOKEN_SITE_ID
    now = utcnow()
    await repo.put_google_token({
        "site_id": site_id,
        "access_token": tokens["access_token"],
        "refresh_token": tokens.get("refresh_token", ""),
        "expires_at": oauth.calculate_expires_at(tokens.get("expires_in", 3600)),
        "scope": tokens.get("scope", ""),
        "created_at": now,
        "updated_at": now,
    })

    return {
        "success": True,
        "message": "Google Search Console connected successfully",
        "site_id": site_id,
        "scope": tokens.get("scope", ""),
    }


async def _require_token(repo: Repository, site_id: str) -> None:
    if not await repo.get_google_token(site_id):
        raise errors.NotConnected(
            "Google Search Console not connected. Visit /auth/google to connect."
        )


@app.get("/gsc/properties", dependencies=[Depends(require_api_key)])
async def gsc_properties(
    site_id: str = DEFAULT_TOKEN_SITE_ID,
    repo: Repository = Depends(get_repository),
    http_client=Depends(get_http_client),
):
    await _require_token(repo, site_id)
    properties = await gsc_client.list_properties(repo, site_id, client=http_client)
    if properties is None:
        raise errors.UpstreamError("Failed to fetch Search Console properties")

    return {
        "connected": True,
        "site_id": site_id,
        "properties": [
            {"url": entry.get("siteUrl"), "permission": entry.get("permissionLevel")}
            for entry in properties.get("siteEntry") or []
        ],
    }


@app.get("/gsc/inspect", dependencies=[Depends(require_api_key)])
async def gsc_inspect(
    url: str,
    site_url: str,
    site_id: str = DEFAULT_TOKEN_SITE_ID,
    repo: Repository = Depends(get_repository),
    http_client=Depends(get_http_client),
):
    await _require_token(repo, site_id)
    result = await gsc_client.inspect_url(repo, site_id, url, site_url, client=http_client)
    if not result or not result.get("inspectionResult"):
        raise errors.UpstreamError(
            "Failed to inspect URL. Check that the site_url matches your GSC property."
        )

    issues = map_inspection_result(url, result["inspectionResult"])
    return {
        "url": url,
        "site_url": site_url,
        "inspection_result": result["inspectionResult"],
        "issues": issues,
        "issues_count": len(issues),
    }


if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("seo_solver.main:app", host="0.0.0.0", port=port, reload=True)
