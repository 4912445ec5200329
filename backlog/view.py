"""
View projector: derives what the board shows from the order model.

Holds no state of its own. Recompute after every model or filter change.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .schema import Category, Issue

# Render order of the category buckets
CATEGORY_ORDER_WITH_DONE: Tuple[Category, ...] = (
    Category.DONE, Category.IN_REVIEW, Category.IN_PROGRESS, Category.PLANNED,
)
CATEGORY_ORDER: Tuple[Category, ...] = (
    Category.IN_REVIEW, Category.IN_PROGRESS, Category.PLANNED,
)


@dataclass
class CategoryBucket:
    category: Category
    issues: List[Issue] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """An empty bucket renders as an empty drop zone."""
        return not self.issues

    @property
    def drop_zone_id(self) -> str:
        return f"empty-{self.category.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "label": self.category.label,
            "issues": [i.to_dict() for i in self.issues],
            "empty_drop_zone": self.drop_zone_id if self.is_empty else None,
        }


@dataclass
class BoardView:
    buckets: List[CategoryBucket]
    tag_counts: List[Tuple[str, int]]
    done_count: int
    selected_tags: List[str]
    show_done: bool

    def bucket(self, category: Category) -> Optional[CategoryBucket]:
        for b in self.buckets:
            if b.category == category:
                return b
        return None

    def flat(self) -> List[Issue]:
        return [i for b in self.buckets for i in b.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buckets": [b.to_dict() for b in self.buckets],
            "tags": [{"tag": t, "count": c} for t, c in self.tag_counts],
            "done_count": self.done_count,
            "selected_tags": list(self.selected_tags),
            "show_done": self.show_done,
        }


def category_order(show_done: bool) -> Tuple[Category, ...]:
    return CATEGORY_ORDER_WITH_DONE if show_done else CATEGORY_ORDER


def filter_issues(
    issues: Iterable[Issue],
    selected_tags: Optional[Iterable[str]] = None,
    show_done: bool = False,
) -> List[Issue]:
    """Tag filter (match ANY selected tag) and done visibility, order kept."""
    selected = list(selected_tags or [])
    result = []
    for issue in issues:
        if selected and not issue.has_any_tag(selected):
            continue
        if not show_done and issue.category == Category.DONE:
            continue
        result.append(issue)
    return result


def tag_counts(issues: Iterable[Issue], show_done: bool = False) -> List[Tuple[str, int]]:
    """Unique tags with usage counts, most used first.

    Done issues only count when they are visible. Ties keep first-seen order.
    """
    counts: Dict[str, int] = {}
    for issue in issues:
        if not show_done and issue.category == Category.DONE:
            continue
        for tag in issue.tags:
            counts[tag] = counts.get(tag, 0) + 1
    return sorted(counts.items(), key=lambda kv: -kv[1])


def project(
    ordered: Iterable[Issue],
    selected_tags: Optional[Iterable[str]] = None,
    show_done: bool = False,
    drag_snapshot: Optional[Issue] = None,
) -> BoardView:
    """Build the grouped board from issues already in display order.

    While a drag is in flight, `drag_snapshot` stands in for the live issue
    with the same id so it renders where it was picked up.
    """
    issues = list(ordered)
    if drag_snapshot is not None:
        issues = [drag_snapshot if i.id == drag_snapshot.id else i for i in issues]
    selected = list(selected_tags or [])
    visible = filter_issues(issues, selected, show_done)
    buckets = [
        CategoryBucket(category, [i for i in visible if i.category == category])
        for category in category_order(show_done)
    ]
    return BoardView(
        buckets=buckets,
        tag_counts=tag_counts(issues, show_done),
        done_count=sum(1 for i in issues if i.category == Category.DONE),
        selected_tags=selected,
        show_done=show_done,
    )
