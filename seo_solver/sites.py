"""Site identity and check scheduling."""

from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

SCHEDULE_INTERVALS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    # Manual sites are never picked up by the scheduler.
    "manual": timedelta(days=365),
}


def extract_site_id(site_url: str) -> str:
    """Lower-cased hostname without a leading "www."."""
    hostname = urlparse(site_url).hostname
    if not hostname:
        return site_url
    return hostname.removeprefix("www.")


def compute_next_check(schedule: str, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    interval = SCHEDULE_INTERVALS.get(schedule, SCHEDULE_INTERVALS["daily"])
    return (now + interval).isoformat().replace("+00:00", "Z")


def build_site(request: dict, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    schedule = request.get("check_schedule") or "daily"
    return {
        "site_id": extract_site_id(request["site_url"]),
        "site_url": request["site_url"],
        "sitemap_url": request.get("sitemap_url"),
        "gsc_property": request.get("gsc_property"),
        "check_schedule": schedule,
        "notification_webhook": request.get("notification_webhook"),
        "notification_email": request.get("notification_email"),
        "last_check": None,
        "next_check": compute_next_check(schedule, now),
        "open_issues": 0,
        "created_at": now.isoformat().replace("+00:00", "Z"),
    }


def is_due(site: dict, now: datetime | None = None) -> bool:
    if site.get("check_schedule") == "manual":
        return False
    next_check = site.get("next_check")
    if not next_check:
        return True
    now = now or datetime.now(timezone.utc)
    try:
        return now >= datetime.fromisoformat(next_check.replace("Z", "+00:00"))
    except ValueError:
        return True
