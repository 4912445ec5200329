"""
Backlog issue schema.

Issue lifecycle (category):
  Planned → In Progress → In Review → Done

Any category may be reached from any other by dragging; there is no
transition table. Position is carried by the numeric priority field,
which is a contiguous 0..n-1 sequence after every reconciliation.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import uuid


class Category(Enum):
    """The four fixed workflow categories."""
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    IN_REVIEW = "in-review"
    DONE = "done"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "Category":
        """Parse a stored value or enum name, falling back to PLANNED."""
        if isinstance(value, Category):
            return value
        if not value:
            return cls.PLANNED
        try:
            return cls(value)
        except ValueError:
            pass
        try:
            return cls[value.upper().replace("-", "_")]
        except KeyError:
            return cls.PLANNED

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS: Dict[Category, str] = {
    Category.PLANNED: "Planned",
    Category.IN_PROGRESS: "In Progress",
    Category.IN_REVIEW: "In Review",
    Category.DONE: "Done",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_issue_id() -> str:
    return str(uuid.uuid4())


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return utc_now()


def _ts(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def priority_value(priority: float) -> Any:
    """Render integral priorities as int, provisional ones as float."""
    if float(priority).is_integer():
        return int(priority)
    return float(priority)


@dataclass
class Issue:
    """A unit of backlog work."""

    # Identifiers
    id: str                         # Opaque, immutable join key
    account_id: str = ""
    issue_number: str = ""          # Human label, e.g. WPM-12

    # Content
    title: str = ""
    description: str = ""

    # Ordering
    category: Category = Category.PLANNED
    priority: float = 0             # Lower = higher in the list

    # Metadata
    tags: List[str] = field(default_factory=list)
    comment_count: int = 0
    due_date: Optional[str] = None  # Free-form display string ("Jan 18")
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def has_any_tag(self, tags) -> bool:
        return any(t in self.tags for t in tags)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a store row / API payload (snake_case keys)."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "issue_number": self.issue_number,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "priority": priority_value(self.priority),
            "tags": list(self.tags),
            "comment_count": self.comment_count,
            "due_date": self.due_date,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        """Deserialize from a store row / API payload."""
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            tags = []
        return cls(
            id=str(data.get("id") or new_issue_id()),
            account_id=data.get("account_id") or "",
            issue_number=data.get("issue_number") or "",
            title=data.get("title") or "",
            description=data.get("description") or "",
            category=Category.from_str(data.get("category")),
            priority=data.get("priority") if data.get("priority") is not None else 0,
            tags=[str(t) for t in tags],
            comment_count=int(data.get("comment_count") or 0),
            due_date=data.get("due_date"),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )


# Fields a direct edit may change. Priority is owned by the reconciliation
# engine and is never edited through this path.
EDITABLE_FIELDS = ("title", "description", "category", "tags", "comment_count", "due_date")


@dataclass
class Account:
    """A backlog owner: issue counter and focus text."""
    id: str
    name: str = ""
    issue_counter: int = 0
    current_focus: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "issue_counter": self.issue_counter,
            "current_focus": self.current_focus,
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            issue_counter=int(data.get("issue_counter") or 0),
            current_focus=data.get("current_focus") or "",
            created_at=_parse_ts(data.get("created_at")),
        )
