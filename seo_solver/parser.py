"""
Pull the SEO-relevant tags out of HTML and the URLs out of sitemaps.
"""

import json
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup


class JsonLdSyntaxError:
    """Marker for a JSON-LD block that failed to parse."""

    def __init__(self, error: str, raw: str):
        self.error = error
        self.raw = raw


def extract_json_ld_blocks(html: str) -> list:
    """
    Return one entry per JSON-LD script block: the decoded JSON, or a
    JsonLdSyntaxError when the block is not valid JSON.
    """
    soup = BeautifulSoup(html, "lxml")
    blocks = []

    for script in soup.find_all("script", type="application/ld+json"):
        raw = (script.string or script.get_text() or "").strip()
        try:
            blocks.append(json.loads(raw))
        except json.JSONDecodeError as e:
            blocks.append(JsonLdSyntaxError(str(e), raw[:200]))

    return blocks


def flatten_json_ld(blocks: list) -> list:
    """A block holding an array literal or an @graph array contributes its members."""
    results = []
    for data in blocks:
        if isinstance(data, dict) and isinstance(data.get("@graph"), list):
            results.extend(data["@graph"])
        elif isinstance(data, list):
            results.extend(data)
        else:
            results.append(data)
    return results

def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    for meta in soup.find_all("meta"):
        if (meta.get("name") or "").lower() == name:
            return meta.get("content")
    return None


def parse_head(html: str, base_url: Optional[str] = None) -> dict:
    """Extract canonical, robots and viewport signals."""
    soup = BeautifulSoup(html, "lxml")

    result = {
        "canonical": None,
        "meta_robots": None,
        "has_viewport": False,
        "viewport": None,
    }

    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" in (r.lower() for r in rel):
            href = link["href"].strip()
            result["canonical"] = urljoin(base_url, href) if base_url else href
            break

    result["meta_robots"] = _meta_content(soup, "robots")

    for meta in soup.find_all("meta"):
        if (meta.get("name") or "").lower() == "viewport":
            result["has_viewport"] = True
            result["viewport"] = meta.get("content")
            break

    return result


def extract_sitemap_urls(xml: str) -> list[str]:
    """Return the <loc> entries of a sitemap (or sitemap index)."""
    soup = BeautifulSoup(xml, "xml")
    return [loc.get_text(strip=True) for loc in soup.find_all("loc") if loc.get_text(strip=True)]
