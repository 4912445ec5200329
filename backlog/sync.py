"""
Persistence synchronizer: writes reconciled state to the store.

The in-memory model is updated first; writes are queued in an outbox and
sent by a background worker so the caller never waits on the store.
Failed writes are logged and kept in the outbox history marked "failed".
There is no retry and no rollback: the local model stays authoritative
for the rest of the session, and the divergence shows up in the
consistency check run on the next load.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .errors import PersistenceError
from .schema import Issue, priority_value

logger = logging.getLogger(__name__)

PENDING = "pending"
ACKED = "acked"
FAILED = "failed"


@dataclass
class OutboxEntry:
    """One queued store write."""
    seq: int
    kind: str                       # "priorities" | "update" | "delete" | "focus"
    payload: Any
    issue_ids: Tuple[str, ...]
    status: str = PENDING
    error: str = ""
    failed_ids: Tuple[str, ...] = ()
    queued_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "kind": self.kind,
            "issue_ids": list(self.issue_ids),
            "status": self.status,
            "error": self.error,
            "failed_ids": list(self.failed_ids),
        }


@dataclass
class Divergence:
    """A field where the store disagrees with the local model."""
    issue_id: str
    field: str
    local: Any
    remote: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"issue_id": self.issue_id, "field": self.field,
                "local": self.local, "remote": self.remote}


class PersistenceSynchronizer:
    """Outbox + worker thread in front of an issue store."""

    def __init__(self, store, account_id: str, background: bool = True, history_size: int = 1000):
        self.store = store
        self.account_id = account_id
        self.background = background
        self._queue: deque = deque()
        self._history: deque = deque(maxlen=history_size)
        self._cond = threading.Condition()
        self._running = False
        self._seq = 0

    # ── Submission ───────────────────────────────────────────────────────────

    def push_priorities(self, priorities: Iterable[Tuple[str, float]]) -> Optional[OutboxEntry]:
        """Queue a batch priority write. Fractional keys are never persisted."""
        batch = []
        for issue_id, priority in priorities:
            value = priority_value(priority)
            if not isinstance(value, int):
                raise ValueError(f"Refusing to persist fractional priority {priority} for {issue_id}")
            batch.append((issue_id, value))
        if not batch:
            return None
        return self._submit("priorities", batch, tuple(i for i, _ in batch))

    def push_update(self, issue_id: str, fields: Dict[str, Any]) -> OutboxEntry:
        return self._submit("update", (issue_id, dict(fields)), (issue_id,))

    def push_delete(self, issue_id: str) -> OutboxEntry:
        return self._submit("delete", issue_id, (issue_id,))

    def push_focus(self, text: str) -> OutboxEntry:
        return self._submit("focus", text, ())

    def _submit(self, kind: str, payload: Any, issue_ids: Tuple[str, ...]) -> OutboxEntry:
        with self._cond:
            self._seq += 1
            entry = OutboxEntry(self._seq, kind, payload, issue_ids)
            self._queue.append(entry)
            if not self.background:
                start = False
            elif not self._running:
                self._running = True
                start = True
            else:
                start = False
        if not self.background:
            self._drain()
        elif start:
            threading.Thread(target=self._drain, name=f"backlog-sync-{self.account_id}", daemon=True).start()
        return entry

    # ── Worker ───────────────────────────────────────────────────────────────

    def _drain(self) -> None:
        while True:
            with self._cond:
                if not self._queue:
                    self._running = False
                    self._cond.notify_all()
                    return
                entry = self._queue[0]
            self._send(entry)
            with self._cond:
                self._queue.popleft()
                self._history.append(entry)
                self._cond.notify_all()

    def _send(self, entry: OutboxEntry) -> None:
        try:
            if entry.kind == "priorities":
                results = self.store.set_priorities(entry.payload)
                failed = tuple(i for i, _ in entry.payload if not results.get(i, False))
                if failed:
                    entry.failed_ids = failed
                    raise PersistenceError(f"{len(failed)} of {len(entry.payload)} priority writes did not land")
            elif entry.kind == "update":
                issue_id, fields = entry.payload
                if self.store.update_item(issue_id, fields) is None:
                    entry.failed_ids = (issue_id,)
                    raise PersistenceError(f"Issue {issue_id} not found in store")
            elif entry.kind == "delete":
                if not self.store.delete_item(entry.payload):
                    # Already gone remotely; the end state matches
                    logger.info(f"Delete of {entry.payload}: not found in store")
            elif entry.kind == "focus":
                if not self.store.set_focus(self.account_id, entry.payload):
                    raise PersistenceError(f"Account {self.account_id} not found in store")
            else:
                raise PersistenceError(f"Unknown outbox entry kind {entry.kind}")
            entry.status = ACKED
        except Exception as e:
            entry.status = FAILED
            entry.error = str(e)
            if not entry.failed_ids:
                entry.failed_ids = entry.issue_ids
            logger.warning(f"Sync #{entry.seq} ({entry.kind}) failed for account {self.account_id}: {e}")

    # ── Status ───────────────────────────────────────────────────────────────

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until the outbox is drained. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._queue and not self._running, timeout)

    def pending_ids(self) -> Set[str]:
        with self._cond:
            return {i for entry in self._queue for i in entry.issue_ids}

    def pending(self) -> List[OutboxEntry]:
        with self._cond:
            return list(self._queue)

    def failed(self) -> List[OutboxEntry]:
        with self._cond:
            return [e for e in self._history if e.status == FAILED]

    def unsynced_ids(self) -> Set[str]:
        """Ids whose last write failed or has not been acknowledged yet."""
        ids = self.pending_ids()
        for entry in self.failed():
            ids.update(entry.failed_ids)
        return ids

    def status(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "pending": [e.to_dict() for e in self.pending()],
            "failed": [e.to_dict() for e in self.failed()],
        }

    def forget_failures(self) -> None:
        """Drop failed entries from the history (after a reload)."""
        with self._cond:
            kept = [e for e in self._history if e.status != FAILED]
            self._history.clear()
            self._history.extend(kept)


def find_divergence(local: Iterable[Issue], remote: Iterable[Issue]) -> List[Divergence]:
    """Compare the local model with what the store returned.

    Reports issues missing on either side and category/priority mismatches.
    """
    local_by_id = {i.id: i for i in local}
    remote_by_id = {i.id: i for i in remote}
    found: List[Divergence] = []
    for issue_id, issue in local_by_id.items():
        other = remote_by_id.get(issue_id)
        if other is None:
            found.append(Divergence(issue_id, "presence", True, False))
            continue
        if issue.category != other.category:
            found.append(Divergence(issue_id, "category", issue.category.value, other.category.value))
        if priority_value(issue.priority) != priority_value(other.priority):
            found.append(Divergence(issue_id, "priority", priority_value(issue.priority),
                                    priority_value(other.priority)))
    for issue_id in remote_by_id:
        if issue_id not in local_by_id:
            found.append(Divergence(issue_id, "presence", False, True))
    return found
