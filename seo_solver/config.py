"""
Runtime configuration, read from the environment (and a local .env file).
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    api_secret: str
    pagespeed_api_key: str
    google_client_id: str
    google_client_secret: str
    google_redirect_uri: str
    fetch_timeout: float
    rate_limit_per_minute: int
    log_level: str
    scheduler_interval: int


def get_settings() -> Settings:
    """Read settings fresh from the environment on every call."""
    return Settings(
        api_secret=os.environ.get("API_SECRET_KEY", ""),
        pagespeed_api_key=os.environ.get("PAGESPEED_API_KEY", ""),
        google_client_id=os.environ.get("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.environ.get("GOOGLE_CLIENT_SECRET", ""),
        google_redirect_uri=os.environ.get("GOOGLE_REDIRECT_URI", ""),
        fetch_timeout=float(os.environ.get("FETCH_TIMEOUT", 15.0)),
        rate_limit_per_minute=int(os.environ.get("RATE_LIMIT_PER_MINUTE", 0)),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        scheduler_interval=int(os.environ.get("SCHEDULER_INTERVAL_SECONDS", 3600)),
    )
