"""
Reconciliation engine: applies a move intent to the order model.

Every mutation ends with a reindex, so on return the model's priorities
are 0..n-1 in display order and can be persisted as-is. Fractional
priorities only exist between staging and that final reindex.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from .drag import (
    CrossCategoryReorder,
    DropIntoEmptyCategory,
    MoveIntent,
    NoOp,
    SameCategoryReorder,
)
from .errors import ItemNotFound
from .order import OrderModel
from .schema import Category, Issue

logger = logging.getLogger(__name__)

TOP = "top"
BOTTOM = "bottom"


@dataclass
class ReconcileResult:
    """What a reconciliation changed, for the synchronizer."""
    priorities: List[Tuple[str, int]] = field(default_factory=list)
    category_changes: List[Tuple[str, Category]] = field(default_factory=list)
    changed: bool = False

    @classmethod
    def unchanged(cls) -> "ReconcileResult":
        return cls()


def _require(model: OrderModel, issue_id: str) -> Issue:
    issue = model.get(issue_id)
    if issue is None:
        raise ItemNotFound(issue_id)
    return issue


def _move(items: List[Issue], old_index: int, new_index: int) -> List[Issue]:
    """Classic list move: remove, then insert. Not a swap."""
    result = list(items)
    result.insert(new_index, result.pop(old_index))
    return result


class ReconciliationEngine:
    """Mutates an OrderModel according to move intents."""

    def __init__(self, model: OrderModel):
        self.model = model

    # ── Public API ───────────────────────────────────────────────────────────

    def apply(self, intent: MoveIntent) -> ReconcileResult:
        """Apply one intent. Raises ItemNotFound without mutating."""
        if isinstance(intent, NoOp):
            _require(self.model, intent.item_id)
            return ReconcileResult.unchanged()
        if isinstance(intent, SameCategoryReorder):
            return self.reorder_within_category(intent)
        if isinstance(intent, CrossCategoryReorder):
            return self.move_across_categories(intent.item_id, intent.target_item_id)
        if isinstance(intent, DropIntoEmptyCategory):
            return self.drop_into_category(intent.item_id, intent.new_category)
        raise TypeError(f"Unknown move intent: {intent!r}")

    def reorder_within_category(self, intent: SameCategoryReorder) -> ReconcileResult:
        _require(self.model, intent.item_id)
        items = self.model.sorted_list()
        old_index = self._current_index(items, intent.item_id, intent.source_index)
        if not 0 <= intent.target_index < len(items):
            raise ItemNotFound(f"index {intent.target_index}")
        if old_index == intent.target_index:
            return ReconcileResult.unchanged()
        return self._commit(_move(items, old_index, intent.target_index))

    def move_across_categories(self, item_id: str, target_id: str) -> ReconcileResult:
        """Drop an issue onto an issue of another category.

        The dragged issue takes the target's slot: moving down it lands just
        after the target, moving up just before it (same as a list move).
        """
        dragged = _require(self.model, item_id)
        target = _require(self.model, target_id)
        if item_id == target_id:
            return ReconcileResult.unchanged()
        items = self.model.sorted_list()
        old_index = items.index(dragged)
        target_index = items.index(target)
        without = [i for i in items if i.id != item_id]
        without.insert(target_index, dragged)
        moved_from = dragged.category
        dragged.category = target.category
        dragged.touch()
        result = self._commit(without)
        if moved_from != dragged.category:
            result.category_changes.append((item_id, dragged.category))
            result.changed = True
        logger.debug(f"Moved {item_id} {old_index}->{target_index} into {dragged.category.value}")
        return result

    def drop_into_category(self, item_id: str, category: Category) -> ReconcileResult:
        """Recategorize only; position among all issues is unchanged."""
        dragged = _require(self.model, item_id)
        items = self.model.sorted_list()
        changed_category = dragged.category != category
        dragged.category = category
        if changed_category:
            dragged.touch()
        result = self._commit(items)
        if changed_category:
            result.category_changes.append((item_id, category))
            result.changed = True
        return result

    def add_to_category(self, issue: Issue, category: Category, position: str = BOTTOM) -> ReconcileResult:
        """Insert a new issue at the top or bottom of a category.

        Stages a provisional priority (min - 0.5 for top, max + 1 for bottom,
        0 for an empty category) and reindexes straight away.
        """
        if position not in (TOP, BOTTOM):
            raise ValueError(f"position must be '{TOP}' or '{BOTTOM}', got {position!r}")
        peers = [i.priority for i in self.model.in_category(category)]
        if not peers:
            provisional = 0
        elif position == TOP:
            provisional = min(peers) - 0.5
        else:
            provisional = max(peers) + 1
        issue.category = category
        issue.priority = provisional
        self.model.add(issue)
        return self.reindex()

    def append(self, issue: Issue, category: Category) -> ReconcileResult:
        """Order-model append (end of category) followed by a reindex."""
        self.model.append(issue, category)
        return self.reindex()

    def reindex(self) -> ReconcileResult:
        """Stable re-sort by priority, then priority = index."""
        return self._commit(self.model.sorted_list())

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _current_index(items: List[Issue], item_id: str, hint: int) -> int:
        if 0 <= hint < len(items) and items[hint].id == item_id:
            return hint
        for idx, issue in enumerate(items):
            if issue.id == item_id:
                return idx
        raise ItemNotFound(item_id)

    def _commit(self, ordered: List[Issue]) -> ReconcileResult:
        before = {i.id: i.priority for i in ordered}
        self.model.commit_order(ordered)
        priorities = [(i.id, int(i.priority)) for i in ordered]
        changed = any(before[i.id] != i.priority for i in ordered)
        return ReconcileResult(priorities=priorities, changed=changed)
