"""
JSON import/export of an account's issues.

Export format:
    {"items": [<issue>, ...], "currentFocusText": "<focus>"}
with camelCase issue records (id, issueNumber, title, description,
category, priority, tags, commentCount, dueDate, createdAt, updatedAt).

Import accepts a list of (partial) records, a single record, or an export
envelope. Missing fields are defaulted, never rejected.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import BacklogError
from .schema import Category, Issue, priority_value

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Issue"

# camelCase export key -> snake_case field
_KEY_MAP = {
    "issueNumber": "issue_number",
    "commentCount": "comment_count",
    "dueDate": "due_date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "accountId": "account_id",
}


class InvalidImport(BacklogError):
    """Raised when import content is not JSON or not issue-shaped at all."""
    pass


@dataclass
class ImportRecord:
    """One import entry after defaults are applied."""
    title: str = DEFAULT_TITLE
    description: str = ""
    category: Category = Category.PLANNED
    tags: List[str] = field(default_factory=list)
    comment_count: int = 0
    due_date: Optional[str] = None
    priority: Optional[float] = None     # None = append after existing
    id: Optional[str] = None             # None = generate; else upsert key
    issue_number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    defaulted: List[str] = field(default_factory=list)

    def to_fields(self) -> Dict[str, Any]:
        """Fields for store.create_item()."""
        data = {
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "tags": list(self.tags),
            "comment_count": self.comment_count,
            "due_date": self.due_date,
        }
        for key in ("id", "issue_number", "created_at", "updated_at"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data


def issue_to_export(issue: Issue) -> Dict[str, Any]:
    record = {
        "id": issue.id,
        "issueNumber": issue.issue_number,
        "title": issue.title,
        "description": issue.description,
        "category": issue.category.value,
        "priority": priority_value(issue.priority),
        "tags": list(issue.tags),
        "commentCount": issue.comment_count,
        "createdAt": issue.created_at.isoformat(),
        "updatedAt": issue.updated_at.isoformat(),
    }
    if issue.due_date:
        record["dueDate"] = issue.due_date
    return record


def export_payload(issues: Iterable[Issue], current_focus: str = "") -> Dict[str, Any]:
    return {
        "items": [issue_to_export(i) for i in issues],
        "currentFocusText": current_focus or "",
    }


def export_json(issues: Iterable[Issue], current_focus: str = "") -> str:
    return json.dumps(export_payload(issues, current_focus), indent=2)


def parse_import(content: Union[str, bytes, Dict[str, Any], List[Any]]) -> List[Dict[str, Any]]:
    """Normalize import content to a list of raw record dicts."""
    data = content
    if isinstance(content, (str, bytes)):
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise InvalidImport(f"Invalid JSON: {e}") from e

    if isinstance(data, dict):
        envelope = data.get("items", data.get("issues"))
        if isinstance(envelope, list):
            data = envelope
        else:
            data = [data]
    if not isinstance(data, list):
        raise InvalidImport(f"Expected a JSON array or object, got {type(data).__name__}")

    records = []
    for idx, raw in enumerate(data):
        if not isinstance(raw, dict):
            logger.warning(f"Skipping import entry {idx}: not an object")
            continue
        records.append(raw)
    return records


def normalize_record(raw: Dict[str, Any], as_new: bool = False) -> ImportRecord:
    """Apply defaults to one raw record.

    With as_new the record is treated as a fresh issue: id, issue number
    and timestamps are dropped so the store assigns new ones.
    """
    data = {_KEY_MAP.get(k, k): v for k, v in raw.items()}
    record = ImportRecord()

    def take(key, default_used):
        value = data.get(key)
        if value is None or value == "":
            record.defaulted.append(default_used)
            return None
        return value

    title = take("title", "title")
    if title is not None:
        record.title = str(title)
    record.description = str(data.get("description") or "")

    category = take("category", "category")
    if category is not None:
        record.category = Category.from_str(str(category))

    tags = take("tags", "tags")
    if isinstance(tags, list):
        record.tags = [str(t) for t in tags]
    elif tags is not None:
        record.defaulted.append("tags")

    count = take("comment_count", "commentCount")
    if count is not None:
        try:
            record.comment_count = int(count)
        except (TypeError, ValueError):
            record.defaulted.append("commentCount")

    record.due_date = data.get("due_date") or None

    priority = take("priority", "priority")
    if priority is not None:
        try:
            record.priority = float(priority)
        except (TypeError, ValueError):
            record.defaulted.append("priority")

    if not as_new:
        record.id = str(data["id"]) if data.get("id") else None
        record.issue_number = data.get("issue_number") or None
        record.created_at = data.get("created_at") or None
        record.updated_at = data.get("updated_at") or None
    if record.id is None:
        record.defaulted.append("id")

    if record.defaulted:
        logger.debug(f"Import defaults applied for {record.title!r}: {', '.join(record.defaulted)}")
    return record


def import_order(records: List[ImportRecord]) -> List[ImportRecord]:
    """Order imported records for appending after the existing issues.

    Records carrying a priority keep their relative order by it; records
    without one follow in file order.
    """
    ranked = [r for r in records if r.priority is not None]
    unranked = [r for r in records if r.priority is None]
    return sorted(ranked, key=lambda r: r.priority) + unranked
