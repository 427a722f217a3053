"""
Google OAuth 2.0 for Search Console access.
"""

import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx

from ..config import get_settings
from ..fetcher import client_scope

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

SCOPES = [
    "https://www.googleapis.com/auth/webmasters.readonly",
]

STATE_TTL = timedelta(minutes=10)
EXPIRY_BUFFER = timedelta(minutes=5)


class OAuthConfigError(RuntimeError):
    pass


class TokenExchangeError(Exception):
    pass


def get_oauth_config() -> dict:
    settings = get_settings()
    config = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "redirect_uri": settings.google_redirect_uri,
    }
    if not all(config.values()):
        raise OAuthConfigError(
            "Missing Google OAuth configuration. Set GOOGLE_CLIENT_ID, "
            "GOOGLE_CLIENT_SECRET, and GOOGLE_REDIRECT_URI"
        )
    return config


def generate_auth_url(state: str) -> str:
    config = get_oauth_config()
    params = {
        "client_id": config["client_id"],
        "redirect_uri": config["redirect_uri"],
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",  # ask for a refresh token
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def generate_state() -> str:
    return secrets.token_hex(32)


async def _token_request(data: dict, client: httpx.AsyncClient | None) -> dict:
    """POST to the token endpoint. Any failure, including a reply without an
    access_token, raises TokenExchangeError.
    """
    try:
        async with client_scope(client) as http:
            resp = await http.post(GOOGLE_TOKEN_URL, data=data)
    except httpx.HTTPError as e:
        raise TokenExchangeError(f"Google token endpoint unreachable: {e}") from e
    if resp.status_code != 200:
        raise TokenExchangeError(f"Google token endpoint returned {resp.status_code}: {resp.text[:200]}")
    try:
        tokens = resp.json()
    except ValueError as e:
        raise TokenExchangeError(f"Google token endpoint returned invalid JSON: {resp.text[:200]}") from e
    if not isinstance(tokens, dict) or not tokens.get("access_token"):
        raise TokenExchangeError("Google token endpoint response has no access_token")
    return tokens


async def exchange_code_for_tokens(code: str, client: httpx.AsyncClient | None = None) -> dict:
    config = get_oauth_config()
    return await _token_request({
        "client_id": config["client_id"],
        "client_secret": config["client_secret"],
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config["redirect_uri"],
    }, client)


async def refresh_access_token(refresh_token: str, client: httpx.AsyncClient | None = None) -> dict:
    config = get_oauth_config()
    return await _token_request({
        "client_id": config["client_id"],
        "client_secret": config["client_secret"],
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }, client)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def calculate_expires_at(expires_in: int | float) -> str:
    return _iso(_now() + timedelta(seconds=expires_in))


def state_expires_at() -> str:
    return _iso(_now() + STATE_TTL)


def is_expired(expires_at: str, buffer: timedelta = timedelta(0)) -> bool:
    try:
        return _now() > parse_iso(expires_at) - buffer
    except (TypeError, ValueError):
        return True


def is_token_expired(expires_at: str) -> bool:
    """Expired, or within five minutes of expiring."""
    return is_expired(expires_at, EXPIRY_BUFFER)
