"""
Issue assembler: gives raw issues their identifiers and builds the summary.

Validators and the GSC mapper never assign ids or statuses; this module does.
"""

import secrets
import string

from .models import CATEGORIES

ID_ALPHABET = string.ascii_lowercase + string.digits


def _random_id(prefix: str) -> str:
    return prefix + "".join(secrets.choice(ID_ALPHABET) for _ in range(12))


def generate_issue_id() -> str:
    return _random_id("iss_")


def generate_validation_id() -> str:
    return _random_id("val_")


def assign_ids(raw_issues: list[dict]) -> list[dict]:
    """Copy each raw issue with a fresh id; all other fields are left as they are."""
    return [{**issue, "id": generate_issue_id()} for issue in raw_issues]


def build_summary(issues: list[dict]) -> dict:
    by_category = {category: 0 for category in CATEGORIES}
    for issue in issues:
        by_category[issue["category"]] += 1

    return {
        "total_issues": len(issues),
        "errors": sum(1 for i in issues if i["severity"] == "error"),
        "warnings": sum(1 for i in issues if i["severity"] == "warning"),
        "by_category": by_category,
    }


def to_record(issue: dict, site_id: str) -> dict:
    """Storage shape: keyed by (site_id, issue_id), status defaulted to open."""
    return {
        **issue,
        "site_id": site_id,
        "issue_id": issue["id"],
        "status": issue.get("status") or "open",
    }


def from_record(record: dict) -> dict:
    issue = {k: v for k, v in record.items() if k not in ("site_id", "issue_id")}
    issue["id"] = record["issue_id"]
    return issue
