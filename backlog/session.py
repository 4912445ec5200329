"""
Backlog session: the explicit per-account context.

One session owns the order model, drag controller, reconciliation engine
and synchronizer for a single account. Every operation goes through it;
nothing reads a global "current account".

Mutations are applied to the model first and then queued for the store
(optimistic). Creating an issue is the exception: the store assigns the
issue number, so creation waits for the store.
"""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Union

from .drag import DragController
from .errors import EmptyAccount, ItemNotFound, PersistenceError
from .order import OrderModel
from .reconcile import ReconcileResult, ReconciliationEngine
from .schema import EDITABLE_FIELDS, Category, Issue
from .sync import Divergence, PersistenceSynchronizer, find_divergence
from .transfer import export_payload, import_order, normalize_record, parse_import
from .view import BoardView, project

logger = logging.getLogger(__name__)


class BacklogSession:
    """Ordering engine bound to one account and one store."""

    def __init__(self, store, account_id: str, account_name: str = "", background_sync: bool = True):
        self.store = store
        self.account_id = account_id
        self.account_name = account_name or account_id
        self.model = OrderModel()
        self.engine = ReconciliationEngine(self.model)
        self.drag = DragController()
        self.sync = PersistenceSynchronizer(store, account_id, background=background_sync)
        # Callers sharing a session across threads hold this around each operation
        self.lock = threading.Lock()

        # View filters (not persisted)
        self.selected_tags: List[str] = []
        self.show_done: bool = False

        self.current_focus: str = ""
        self.divergences: List[Divergence] = []
        self.loaded = False

    # ── Loading ──────────────────────────────────────────────────────────────

    def load(self) -> List[Divergence]:
        """(Re)load the account from the store.

        On a reload, the store is first compared with the local model and
        any divergence left by failed writes is logged and returned. If the
        store cannot be read, the local model is kept as it is.
        """
        self.sync.flush()
        try:
            self.store.ensure_account(self.account_id, self.account_name)
        except PersistenceError as e:
            logger.warning(f"Could not ensure account {self.account_id}: {e}")

        try:
            remote: Optional[List[Issue]] = self.store.list_items(self.account_id)
        except PersistenceError as e:
            logger.warning(f"Load failed for account {self.account_id}: {e}")
            if self.loaded:
                return []
            remote = None

        divergences: List[Divergence] = []
        if self.loaded and remote is not None:
            divergences = find_divergence(self.model.sorted_view(), remote)
            if divergences:
                logger.warning(
                    f"Account {self.account_id}: store diverges from local order "
                    f"on {len(divergences)} field(s); reloading from store"
                )
        self.divergences = divergences

        try:
            self.model.load(remote)
        except EmptyAccount:
            logger.info(f"Account {self.account_id} has no item source; starting empty")
        self.sync.forget_failures()
        self.drag.cancel()

        try:
            self.current_focus = self.store.get_focus(self.account_id)
        except PersistenceError as e:
            logger.warning(f"Could not read focus for {self.account_id}: {e}")
        self.loaded = True
        return divergences

    def check_consistency(self) -> List[Divergence]:
        """Compare the store with the local model without reloading."""
        self.sync.flush()
        try:
            remote = self.store.list_items(self.account_id)
        except PersistenceError as e:
            logger.warning(f"Consistency check failed for {self.account_id}: {e}")
            return []
        return find_divergence(self.model.sorted_view(), remote)

    # ── View ─────────────────────────────────────────────────────────────────

    def view(self, selected_tags: Optional[Iterable[str]] = None,
             show_done: Optional[bool] = None) -> BoardView:
        """Project the board. Explicit filters override the session's own."""
        return project(
            self.model.sorted_view(),
            selected_tags=self.selected_tags if selected_tags is None else list(selected_tags),
            show_done=self.show_done if show_done is None else bool(show_done),
            drag_snapshot=self.drag.snapshot,
        )

    def set_tag_filter(self, tags: Iterable[str]) -> None:
        self.selected_tags = list(dict.fromkeys(tags))

    def toggle_tag(self, tag: str) -> None:
        if tag in self.selected_tags:
            self.selected_tags.remove(tag)
        else:
            self.selected_tags.append(tag)

    def set_show_done(self, show_done: bool) -> None:
        self.show_done = bool(show_done)

    # ── Issues ───────────────────────────────────────────────────────────────

    def add_issue(
        self,
        title: str,
        category: Category = Category.PLANNED,
        position: Optional[str] = None,
        description: str = "",
        tags: Optional[List[str]] = None,
    ) -> Optional[Issue]:
        """Create an issue and reconcile it into the order.

        position None appends to the end of the category; "top" or
        "bottom" stage a provisional priority first. Returns None when the
        title is blank or the store rejects the create.
        """
        if not title or not title.strip():
            return None
        category = Category.from_str(category)
        fields = {
            "title": title.strip(),
            "description": description or "",
            "category": category.value,
            "tags": list(tags or []),
            "priority": len(self.model),
        }
        try:
            issue = self.store.create_item(self.account_id, fields)
        except PersistenceError as e:
            logger.warning(f"Create failed for account {self.account_id}: {e}")
            return None

        if position is None:
            result = self.engine.append(issue, category)
        else:
            result = self.engine.add_to_category(issue, category, position)
        self._push(result, force=True)
        logger.info(f"Created {issue.issue_number} ({issue.id}) in {category.value}")
        return issue

    def update_issue(self, issue_id: str, fields: Dict[str, Any]) -> Optional[Issue]:
        """Direct field edit. Never touches priority."""
        issue = self.model.get(issue_id)
        if issue is None:
            logger.warning(f"Update ignored: {ItemNotFound(issue_id)}")
            return None
        changes: Dict[str, Any] = {}
        for key in EDITABLE_FIELDS:
            if key not in fields:
                continue
            value = fields[key]
            if key == "category":
                value = Category.from_str(value)
            elif key == "tags":
                value = [str(t) for t in (value or [])]
            setattr(issue, key, value)
            changes[key] = value.value if isinstance(value, Category) else value
        if "priority" in fields:
            logger.debug(f"Ignoring priority in direct edit of {issue_id}")
        if not changes:
            return issue
        issue.touch()
        changes["updated_at"] = issue.updated_at.isoformat()
        self.sync.push_update(issue_id, changes)
        return issue

    def delete_issue(self, issue_id: str) -> bool:
        """Remove an issue. Survivors keep their priorities until the next reconcile."""
        if not self.model.remove(issue_id):
            logger.warning(f"Delete ignored: {ItemNotFound(issue_id)}")
            return False
        self.sync.push_delete(issue_id)
        return True

    def set_focus(self, text: str) -> None:
        self.current_focus = text or ""
        self.sync.push_focus(self.current_focus)

    # ── Drag & drop ──────────────────────────────────────────────────────────

    def drag_start(self, item_id: str) -> bool:
        return self.drag.start(item_id, self.model.sorted_list())

    def drag_cancel(self) -> None:
        self.drag.cancel()

    def drag_end(self, target: Optional[str]) -> Optional[ReconcileResult]:
        """Finish a drag on an issue id or an "empty-<category>" zone.

        Returns the reconciliation result, or None when the drag produced
        no intent or referenced an unknown issue.
        """
        intent = self.drag.end(target, self.model.sorted_list())
        if intent is None:
            return None
        try:
            result = self.engine.apply(intent)
        except ItemNotFound as e:
            logger.warning(f"Dropped move intent {intent}: {e}")
            return None
        self._push(result)
        return result

    def move(self, item_id: str, target: Optional[str]) -> Optional[ReconcileResult]:
        """A whole drag in one call (keyboard moves, API).

        A drag already in progress is cancelled first, so the intent is
        always for item_id.
        """
        if self.drag.state.is_dragging:
            logger.debug(f"Cancelling drag of {self.drag.state.item_id} before moving {item_id}")
            self.drag.cancel()
        if not self.drag_start(item_id):
            logger.warning(f"Move ignored: {ItemNotFound(item_id)}")
            return None
        return self.drag_end(target)

    # ── Import / export ──────────────────────────────────────────────────────

    def import_issues(self, content: Union[str, bytes, Dict[str, Any], List[Any]],
                      as_new: bool = False) -> List[Issue]:
        """Import records, appended after the existing issues, then reindex.

        A record whose id is already loaded updates that issue in place
        (upsert). Raises InvalidImport if the content is not JSON at all.
        """
        records = [normalize_record(raw, as_new=as_new) for raw in parse_import(content)]
        base = self.model.max_priority()
        base = 0 if base is None else base + 1
        touched: List[Issue] = []

        for offset, record in enumerate(import_order(records)):
            if record.id and record.id in self.model:
                fields = record.to_fields()
                updated = self.update_issue(record.id, {k: fields[k] for k in EDITABLE_FIELDS if k in fields})
                if updated is not None:
                    touched.append(updated)
                continue
            try:
                issue = self.store.create_item(self.account_id, record.to_fields())
            except PersistenceError as e:
                logger.warning(f"Import of {record.title!r} failed: {e}")
                continue
            issue.priority = base + offset
            self.model.add(issue)
            touched.append(issue)

        result = self.engine.reindex()
        self._push(result, force=True)
        logger.info(f"Imported {len(touched)} of {len(records)} issue(s) into {self.account_id}")
        return touched

    def export(self) -> Dict[str, Any]:
        return export_payload(self.model.sorted_view(), self.current_focus)

    # ── Sync ─────────────────────────────────────────────────────────────────

    def _push(self, result: ReconcileResult, force: bool = False) -> None:
        for issue_id, category in result.category_changes:
            issue = self.model.get(issue_id)
            self.sync.push_update(issue_id, {
                "category": category.value,
                "updated_at": issue.updated_at.isoformat(),
            })
        if result.changed or force:
            self.sync.push_priorities(result.priorities)

    def close(self, timeout: Optional[float] = 10) -> bool:
        """Wait for queued writes. Returns False if they did not finish in time."""
        return self.sync.flush(timeout)
