"""Per-client sliding-window rate limit."""

from threading import Lock
from time import time

from .errors import RateLimited

WINDOW_SECONDS = 60

_requests: dict[str, list[float]] = {}
_lock = Lock()


def rate_limit(key: str, max_requests: int) -> None:
    """Record one request for key; raise RateLimited past max_requests per window."""
    if max_requests <= 0:
        return
    now = time()
    with _lock:
        cutoff = now - WINDOW_SECONDS
        # Forget clients with no request inside the window.
        for stale in [k for k, ts in _requests.items() if ts[-1] <= cutoff]:
            del _requests[stale]
        timestamps = [ts for ts in _requests.get(key, []) if ts > cutoff]
        if len(timestamps) >= max_requests:
            raise RateLimited(
                "Too many requests. Please slow down.",
                {"limit": max_requests, "window_seconds": WINDOW_SECONDS},
            )
        timestamps.append(now)
        _requests[key] = timestamps


def reset() -> None:
    with _lock:
        _requests.clear()
