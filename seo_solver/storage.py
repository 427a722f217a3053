"""
Storage port.

The service talks to a composite-key store (partition key + sort key) through
the KeyValueStore protocol. Repository maps sites, issues, Google tokens and
OAuth state tokens onto it. MemoryStore is the in-process implementation
used by default and in tests; a table-backed store only needs the four
protocol methods.

Pagination cursors are produced by the store and passed through untouched.
"""

import base64
import copy
import json
from typing import Callable, Optional, Protocol

from .models import utcnow


class KeyValueStore(Protocol):
    async def get(self, pk: str, sk: str) -> Optional[dict]: ...

    async def put(self, pk: str, sk: str, item: dict) -> None: ...

    async def delete(self, pk: str, sk: str) -> None: ...

    async def query(
        self,
        pk: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        where: Optional[Callable[[dict], bool]] = None,
    ) -> tuple[list[dict], Optional[str]]: ...


def _encode_cursor(sk: str) -> str:
    return base64.urlsafe_b64encode(json.dumps({"sk": sk}).encode()).decode()


def _decode_cursor(cursor: str) -> Optional[str]:
    try:
        return json.loads(base64.urlsafe_b64decode(cursor.encode()))["sk"]
    except (ValueError, KeyError, TypeError):
        # Unreadable cursors restart from the beginning.
        return None


class MemoryStore:
    def __init__(self):
        self._tables: dict[str, dict[str, dict]] = {}

    async def get(self, pk, sk):
        item = self._tables.get(pk, {}).get(sk)
        return copy.deepcopy(item) if item is not None else None

    async def put(self, pk, sk, item):
        self._tables.setdefault(pk, {})[sk] = copy.deepcopy(item)

    async def delete(self, pk, sk):
        self._tables.get(pk, {}).pop(sk, None)

    async def query(self, pk, limit=None, cursor=None, where=None):
        partition = self._tables.get(pk, {})
        keys = sorted(partition)
        start = _decode_cursor(cursor) if cursor else None
        if start is not None:
            keys = [k for k in keys if k > start]

        items, last_key = [], None
        for key in keys:
            item = partition[key]
            if where is not None and not where(item):
                continue
            if limit is not None and len(items) >= limit:
                return items, _encode_cursor(last_key)
            items.append(copy.deepcopy(item))
            last_key = key
        return items, None


class Repository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    # --- sites ---

    async def get_site(self, site_id: str) -> Optional[dict]:
        return await self.store.get("SITES", site_id)

    async def put_site(self, site: dict) -> None:
        await self.store.put("SITES", site["site_id"], site)

    async def list_sites(self) -> list[dict]:
        sites, _ = await self.store.query("SITES")
        return sites

    async def update_site_check(self, site_id: str, last_check: str, next_check: str, open_issues: int) -> None:
        site = await self.get_site(site_id)
        if site is None:
            return
        site.update(last_check=last_check, next_check=next_check, open_issues=open_issues)
        await self.put_site(site)

    # --- issues ---

    async def put_issues(self, records: list[dict]) -> None:
        for record in records:
            await self.store.put(f"ISSUES#{record['site_id']}", record["issue_id"], record)
            await self.store.put("ISSUE_INDEX", record["issue_id"], {"site_id": record["site_id"]})

    async def get_issue(self, site_id: str, issue_id: str) -> Optional[dict]:
        return await self.store.get(f"ISSUES#{site_id}", issue_id)

    async def find_issue(self, issue_id: str) -> Optional[dict]:
        pointer = await self.store.get("ISSUE_INDEX", issue_id)
        if pointer is None:
            return None
        return await self.get_issue(pointer["site_id"], issue_id)

    async def query_issues(
        self,
        site_id: str,
        status: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        limit: int = 100,
        cursor: Optional[str] = None,
    ) -> tuple[list[dict], Optional[str]]:
        def where(record: dict) -> bool:
            return (
                (status is None or record.get("status", "open") == status)
                and (category is None or record.get("category") == category)
                and (severity is None or record.get("severity") == severity)
            )

        return await self.store.query(f"ISSUES#{site_id}", limit=limit, cursor=cursor, where=where)

    async def update_issue_status(self, site_id: str, issue_id: str, status: str) -> Optional[dict]:
        record = await self.get_issue(site_id, issue_id)
        if record is None:
            return None
        record["status"] = status
        record["updated_at"] = utcnow()
        await self.store.put(f"ISSUES#{site_id}", issue_id, record)
        return record

    # --- Google tokens ---

    async def get_google_token(self, site_id: str) -> Optional[dict]:
        return await self.store.get(f"GOOGLE#{site_id}", "TOKEN")

    async def put_google_token(self, token: dict) -> None:
        await self.store.put(f"GOOGLE#{token['site_id']}", "TOKEN", token)

    # --- OAuth state tokens ---

    async def get_state_token(self, state: str) -> Optional[dict]:
        return await self.store.get(f"STATE#{state}", "OAUTH")

    async def put_state_token(self, state: str, data: dict) -> None:
        await self.store.put(f"STATE#{state}", "OAUTH", data)

    async def delete_state_token(self, state: str) -> None:
        await self.store.delete(f"STATE#{state}", "OAUTH")
