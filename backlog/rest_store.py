"""
HTTP client for a remote record store (PostgREST-style REST API).

Same contract as SQLiteIssueStore. Tables are addressed as
  {base_url}/issues?id=eq.<id>
and writes ask for the stored row back with "Prefer: return=representation".
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from .errors import PersistenceError
from .schema import EDITABLE_FIELDS, Account, Category, Issue, priority_value, utc_now
from .store import DEFAULT_ISSUE_PREFIX

logger = logging.getLogger(__name__)


class RestIssueStore:
    """Record store reached over HTTP with plain CRUD calls."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5,
                 issue_prefix: str = DEFAULT_ISSUE_PREFIX):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.issue_prefix = issue_prefix

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, table: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}/{table}"
        try:
            r = requests.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PersistenceError(f"{method} {url} failed: {e}") from e
        if not r.ok:
            raise PersistenceError(f"{method} {url} returned {r.status_code}: {r.text[:200]}")
        return r

    @staticmethod
    def _rows(r: requests.Response) -> List[Dict[str, Any]]:
        if not r.content:
            return []
        data = r.json()
        return data if isinstance(data, list) else [data]

    # ── Accounts ─────────────────────────────────────────────────────────────

    def ensure_account(self, account_id: str, name: str = "") -> None:
        rows = self._rows(self._request("GET", "accounts", params={"id": f"eq.{account_id}"}))
        if rows:
            return
        self._request("POST", "accounts", json={
            "id": account_id,
            "name": name or account_id,
            "issue_counter": 0,
            "current_focus": "",
            "created_at": utc_now().isoformat(),
        })

    def next_issue_number(self, account_id: str) -> str:
        """Read-then-write counter bump (not safe against concurrent sessions)."""
        rows = self._rows(self._request(
            "GET", "accounts", params={"id": f"eq.{account_id}", "select": "issue_counter"}
        ))
        if not rows:
            raise PersistenceError(f"Unknown account {account_id}")
        next_number = int(rows[0].get("issue_counter") or 0) + 1
        self._request("PATCH", "accounts", params={"id": f"eq.{account_id}"},
                      json={"issue_counter": next_number})
        return f"{self.issue_prefix}-{next_number}"

    def get_account(self, account_id: str) -> Optional[Account]:
        rows = self._rows(self._request("GET", "accounts", params={"id": f"eq.{account_id}"}))
        return Account.from_dict(rows[0]) if rows else None

    def get_focus(self, account_id: str) -> str:
        rows = self._rows(self._request(
            "GET", "accounts", params={"id": f"eq.{account_id}", "select": "current_focus"}
        ))
        return (rows[0].get("current_focus") or "") if rows else ""

    def set_focus(self, account_id: str, text: str) -> bool:
        rows = self._rows(self._request(
            "PATCH", "accounts", params={"id": f"eq.{account_id}"}, json={"current_focus": text}
        ))
        return bool(rows)

    # ── Issues ───────────────────────────────────────────────────────────────

    def list_items(self, account_id: str) -> List[Issue]:
        rows = self._rows(self._request("GET", "issues", params={
            "account_id": f"eq.{account_id}",
            "order": "priority.asc,created_at.asc,id.asc",
        }))
        return [Issue.from_dict(row) for row in rows]

    def create_item(self, account_id: str, fields: Dict[str, Any]) -> Issue:
        data = dict(fields)
        data["account_id"] = account_id
        if not data.get("issue_number"):
            data["issue_number"] = self.next_issue_number(account_id)
        payload = Issue.from_dict(data).to_dict()
        if not fields.get("id"):
            # The store generates the id
            payload.pop("id")
        rows = self._rows(self._request("POST", "issues", json=payload))
        if not rows:
            raise PersistenceError("Store returned no row for created issue")
        return Issue.from_dict(rows[0])

    def update_item(self, issue_id: str, fields: Dict[str, Any]) -> Optional[Issue]:
        payload: Dict[str, Any] = {}
        for key in EDITABLE_FIELDS + ("priority",):
            if key not in fields:
                continue
            value = fields[key]
            if key == "category":
                value = Category.from_str(value).value
            elif key == "tags":
                value = list(value or [])
            elif key == "priority":
                value = priority_value(value)
            payload[key] = value
        payload["updated_at"] = fields.get("updated_at") or utc_now().isoformat()
        rows = self._rows(self._request("PATCH", "issues", params={"id": f"eq.{issue_id}"}, json=payload))
        return Issue.from_dict(rows[0]) if rows else None

    def delete_item(self, issue_id: str) -> bool:
        rows = self._rows(self._request("DELETE", "issues", params={"id": f"eq.{issue_id}"}))
        return bool(rows)

    def set_priorities(self, priorities: Iterable[Tuple[str, int]]) -> Dict[str, bool]:
        """One PATCH per issue, like the store's own batch: no atomicity."""
        results: Dict[str, bool] = {}
        now = utc_now().isoformat()
        for issue_id, priority in priorities:
            try:
                rows = self._rows(self._request(
                    "PATCH", "issues",
                    params={"id": f"eq.{issue_id}"},
                    json={"priority": priority, "updated_at": now},
                ))
                results[issue_id] = bool(rows)
            except PersistenceError as e:
                logger.warning(f"Priority write failed for {issue_id}: {e}")
                results[issue_id] = False
        return results
