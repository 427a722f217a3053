"""
Mobile usability validator.

The pattern checks are heuristics over inline style attributes in the raw
HTML, not a rendered layout. Each pattern is reported at most once per page.
"""

import logging
import re

import httpx

from ..fetcher import MOBILE_USER_AGENT, fetch_page, is_ok
from ..models import make_issue, utcnow
from ..parser import parse_head

logger = logging.getLogger(__name__)

MAX_FIXED_WIDTH_PX = 1000
MIN_FONT_PX = 12
MIN_TAP_TARGET_PX = 44
PT_TO_PX = 1.333

STYLE_ATTR = re.compile(r"""\sstyle\s*=\s*(["'])(.*?)\1""", re.IGNORECASE | re.DOTALL)
DECLARATION = re.compile(r"(?<![\w-])(width|height|font-size)\s*:\s*(\d+(?:\.\d+)?)\s*(px|pt)\b", re.IGNORECASE)


def check_viewport(head: dict, url: str, now: str) -> dict | None:
    if not head["has_viewport"]:
        return make_issue(
            url, "no_viewport", "error", True,
            'Add <meta name="viewport" content="width=device-width, initial-scale=1"> to the page head',
            detected_at=now,
            message="Viewport meta tag is missing",
        )

    content = head["viewport"] or ""
    lowered = content.lower().replace(" ", "")

    if "width=" not in lowered:
        return make_issue(
            url, "no_viewport", "error", True,
            "Update viewport meta tag to include width=device-width",
            detected_at=now,
            message="Viewport meta tag is missing width=device-width",
            current_content=content,
        )

    if "user-scalable=no" in lowered or "user-scalable=0" in lowered:
        return make_issue(
            url, "content_wider_than_screen", "warning", True,
            "Remove user-scalable=no to allow users to zoom",
            detected_at=now,
            message="Viewport prevents user scaling, which is bad for accessibility",
            current_content=content,
        )
    return None


def check_patterns(html: str, url: str, now: str) -> list[dict]:
    wide = small_font = small_target = None

    for match in STYLE_ATTR.finditer(html):
        dimensions = []
        for prop, size, unit in DECLARATION.findall(match.group(2)):
            prop, unit, value = prop.lower(), unit.lower(), float(size)
            if prop == "font-size":
                px = value * PT_TO_PX if unit == "pt" else value
                if small_font is None and px < MIN_FONT_PX:
                    small_font = f"{size}{unit}"
            elif unit == "px":
                dimensions.append((prop, value))
                if wide is None and prop == "width" and value >= MAX_FIXED_WIDTH_PX:
                    wide = value

        if small_target is None and len(dimensions) >= 2:
            (_, first), (_, second) = dimensions[:2]
            if 0 < first < MIN_TAP_TARGET_PX and 0 < second < MIN_TAP_TARGET_PX:
                small_target = f"{first:g}x{second:g}px"

    issues = []
    if wide is not None:
        issues.append(make_issue(
            url, "content_wider_than_screen", "warning", False,
            "Use responsive units (%, vw, rem) or max-width instead of fixed pixel widths",
            detected_at=now,
            message=f"Found element with fixed width of {wide:g}px which may cause horizontal scroll on mobile",
            width=int(wide),
        ))
    if small_font is not None:
        issues.append(make_issue(
            url, "text_too_small", "warning", False,
            "Use a minimum font size of 12px (or 0.75rem with 16px base) for legibility on mobile",
            detected_at=now,
            message=f"Found text with font-size {small_font} which may be too small on mobile",
            font_size=small_font, min_recommended="12px",
        ))
    if small_target is not None:
        issues.append(make_issue(
            url, "tap_targets_too_close", "warning", False,
            "Ensure touch targets are at least 48x48px with adequate spacing",
            detected_at=now,
            message="Found interactive element smaller than recommended 48x48px tap target size",
            size=small_target, min_recommended="48x48px",
        ))
    return issues


def analyze_html(html: str, url: str) -> list[dict]:
    now = utcnow()
    issues = []
    viewport_issue = check_viewport(parse_head(html), url, now)
    if viewport_issue:
        issues.append(viewport_issue)
    issues.extend(check_patterns(html, url, now))
    return issues


async def validate(url: str, client: httpx.AsyncClient | None = None) -> list[dict]:
    fetch_result = await fetch_page(url, user_agent=MOBILE_USER_AGENT, client=client)
    if not is_ok(fetch_result):
        return []
    try:
        return analyze_html(fetch_result["html"] or "", url)
    except Exception:
        logger.exception("Mobile validation failed for %s", url)
        return []
