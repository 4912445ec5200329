"""
In-memory order model for one account's issues.

The canonical display order is "sort by priority ascending". Python's sort
is stable, so ties fall back to the order of self._items, which starts as
load/insertion order and is rewritten to the display order on every
commit_order(). Iteration order of a dict or set never decides a tie.
"""
import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .errors import EmptyAccount
from .schema import Category, Issue

logger = logging.getLogger(__name__)


class SortedView:
    """Lazy, restartable view of the model in display order.

    Each iteration sorts afresh, so a view obtained before a mutation
    reflects the mutation on the next pass.
    """

    def __init__(self, model: "OrderModel"):
        self._model = model

    def __iter__(self) -> Iterator[Issue]:
        return iter(sorted(self._model._items, key=lambda i: i.priority))

    def __len__(self) -> int:
        return len(self._model._items)


class OrderModel:
    """Priority-ordered collection of issues keyed by id."""

    def __init__(self, items: Optional[Iterable[Issue]] = None):
        self._items: List[Issue] = []
        self._by_id: Dict[str, Issue] = {}
        if items is not None:
            self.load(items)

    # -------------------- loading --------------------

    def load(self, items: Optional[Iterable[Issue]]) -> None:
        """Replace the model contents.

        Raises EmptyAccount (after clearing) when there is no source at all.
        """
        self._items = []
        self._by_id = {}
        if items is None:
            raise EmptyAccount("No item source for account")
        for issue in items:
            if issue.id in self._by_id:
                logger.warning(f"Duplicate issue id {issue.id} on load, keeping first")
                continue
            self._items.append(issue)
            self._by_id[issue.id] = issue

    # -------------------- queries --------------------

    def sorted_view(self) -> SortedView:
        return SortedView(self)

    def sorted_list(self) -> List[Issue]:
        return list(self.sorted_view())

    def get(self, issue_id: str) -> Optional[Issue]:
        return self._by_id.get(issue_id)

    def __contains__(self, issue_id: str) -> bool:
        return issue_id in self._by_id

    def __len__(self) -> int:
        return len(self._items)

    def index_of(self, issue_id: str) -> int:
        """Position of an issue in display order, or -1."""
        for idx, issue in enumerate(self.sorted_view()):
            if issue.id == issue_id:
                return idx
        return -1

    def in_category(self, category: Category) -> List[Issue]:
        return [i for i in self.sorted_view() if i.category == category]

    def max_priority(self) -> Optional[float]:
        return max((i.priority for i in self._items), default=None)

    # -------------------- mutation --------------------

    def add(self, issue: Issue) -> Issue:
        """Insert an issue keeping whatever priority it already carries."""
        if issue.id in self._by_id:
            raise ValueError(f"Issue {issue.id} already loaded")
        self._items.append(issue)
        self._by_id[issue.id] = issue
        return issue

    def append(self, issue: Issue, category: Category) -> Issue:
        """Place an issue at the end of a category.

        priority = max(priority in category) + 1, or 0 for an empty category.
        """
        peers = [i.priority for i in self._items if i.category == category]
        issue.category = category
        issue.priority = max(peers) + 1 if peers else 0
        return self.add(issue)

    def remove(self, issue_id: str) -> bool:
        """Remove by id. Survivors keep their priorities (gaps are fine)."""
        issue = self._by_id.pop(issue_id, None)
        if issue is None:
            return False
        self._items.remove(issue)
        return True

    def commit_order(self, ordered: List[Issue]) -> None:
        """Make `ordered` the display order and assign priority = index.

        `ordered` must be a permutation of the loaded issues.
        """
        if len(ordered) != len(self._items) or any(i.id not in self._by_id for i in ordered):
            raise ValueError("commit_order() needs a permutation of the loaded issues")
        for idx, issue in enumerate(ordered):
            issue.priority = idx
        self._items = list(ordered)

    def reindex(self) -> List[Issue]:
        """Stable re-sort by current priority, then priority = index."""
        ordered = self.sorted_list()
        self.commit_order(ordered)
        return ordered

    def is_contiguous(self) -> bool:
        """True when priorities are exactly 0..n-1 in display order."""
        return [i.priority for i in self.sorted_view()] == list(range(len(self._items)))
