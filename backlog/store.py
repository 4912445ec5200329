"""
Backlog issue storage backend (SQLite).

Implements the record-store contract the synchronizer writes through:
list / create / update / delete per issue, plus a batch priority write
that is applied row by row with no atomicity across rows.
"""
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import PersistenceError
from .schema import EDITABLE_FIELDS, Account, Category, Issue, new_issue_id, priority_value, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_PREFIX = "WPM"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SQLiteIssueStore:
    """SQLite-backed store for backlog issues and accounts."""

    def __init__(self, db_path: str = None, issue_prefix: str = DEFAULT_ISSUE_PREFIX):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "backlog" / "backlog.db")
        self.db_path = db_path
        self.issue_prefix = issue_prefix
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    issue_counter INTEGER DEFAULT 0,
                    current_focus TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS issues (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
                    issue_number TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    category TEXT NOT NULL
                        CHECK (category IN ('planned', 'in-progress', 'in-review', 'done')),
                    priority INTEGER DEFAULT 0,
                    tags TEXT,  -- JSON list
                    comment_count INTEGER DEFAULT 0,
                    due_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._migrate_columns(conn)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_issues_account_id ON issues(account_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_issues_category ON issues(category)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_issues_priority ON issues(priority)")
            conn.commit()

    def _migrate_columns(self, conn):
        """Add columns introduced after the first schema (ignored if present)."""
        new_columns = [
            ("comment_count", "INTEGER DEFAULT 0"),
            ("due_date", "TEXT"),
        ]
        existing = {row["name"] for row in conn.execute("PRAGMA table_info(issues)")}
        for col_name, col_type in new_columns:
            if col_name not in existing:
                conn.execute(f"ALTER TABLE issues ADD COLUMN {col_name} {col_type}")

    # ── Accounts ─────────────────────────────────────────────────────────────

    def ensure_account(self, account_id: str, name: str = "") -> None:
        """Create the account row if missing."""
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO accounts (id, name, issue_counter, current_focus, created_at) "
                    "VALUES (?, ?, 0, '', ?)",
                    (account_id, name or account_id, utc_now().isoformat()),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error creating account {account_id}: {e}") from e

    def next_issue_number(self, account_id: str) -> str:
        """Bump the per-account counter and return the next label (WPM-7)."""
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(
                    "UPDATE accounts SET issue_counter = issue_counter + 1 WHERE id = ?",
                    (account_id,),
                )
                if cur.rowcount == 0:
                    raise PersistenceError(f"Unknown account {account_id}")
                row = conn.execute(
                    "SELECT issue_counter FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error bumping issue counter for {account_id}: {e}") from e
        return f"{self.issue_prefix}-{row['issue_counter']}"

    def get_account(self, account_id: str) -> Optional[Account]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error reading account {account_id}: {e}") from e
        return Account.from_dict(dict(row)) if row else None

    def get_focus(self, account_id: str) -> str:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT current_focus FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error reading focus for {account_id}: {e}") from e
        return (row["current_focus"] or "") if row else ""

    def set_focus(self, account_id: str, text: str) -> bool:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(
                    "UPDATE accounts SET current_focus = ? WHERE id = ?", (text, account_id)
                )
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            raise PersistenceError(f"Error updating focus for {account_id}: {e}") from e

    # ── Issues ───────────────────────────────────────────────────────────────

    def list_items(self, account_id: str) -> List[Issue]:
        """All issues of an account ordered by priority (empty if none)."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM issues WHERE account_id = ? ORDER BY priority ASC, rowid ASC",
                    (account_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error listing issues for {account_id}: {e}") from e
        return [self._row_to_issue(row) for row in rows]

    def get(self, issue_id: str) -> Optional[Issue]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error retrieving issue {issue_id}: {e}") from e
        return self._row_to_issue(row) if row else None

    def create_item(self, account_id: str, fields: Dict[str, Any]) -> Issue:
        """Insert an issue. Assigns id and issue number when omitted."""
        data = dict(fields)
        data["account_id"] = account_id
        data["id"] = data.get("id") or new_issue_id()
        if not data.get("issue_number"):
            data["issue_number"] = self.next_issue_number(account_id)
        issue = Issue.from_dict(data)
        row = issue.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO issues
                    (id, account_id, issue_number, title, description, category,
                     priority, tags, comment_count, due_date, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    row["id"],
                    row["account_id"],
                    row["issue_number"],
                    row["title"],
                    row["description"],
                    row["category"],
                    row["priority"],
                    json.dumps(row["tags"]),
                    row["comment_count"],
                    row["due_date"],
                    row["created_at"],
                    row["updated_at"],
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error creating issue {row['id']}: {e}") from e
        return issue

    def update_item(self, issue_id: str, fields: Dict[str, Any]) -> Optional[Issue]:
        """Partial update. Returns the stored issue, or None if not found."""
        updates: Dict[str, Any] = {}
        for key in EDITABLE_FIELDS + ("priority",):
            if key not in fields:
                continue
            value = fields[key]
            if key == "category":
                value = Category.from_str(value).value
            elif key == "tags":
                value = json.dumps(list(value or []))
            elif key == "priority":
                value = priority_value(value)
            updates[key] = value
        updates["updated_at"] = fields.get("updated_at") or utc_now().isoformat()
        assignments = ", ".join(f"{col} = ?" for col in updates)
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(
                    f"UPDATE issues SET {assignments} WHERE id = ?",
                    (*updates.values(), issue_id),
                )
                conn.commit()
                if cur.rowcount == 0:
                    return None
                row = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error updating issue {issue_id}: {e}") from e
        return self._row_to_issue(row)

    def delete_item(self, issue_id: str) -> bool:
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("DELETE FROM issues WHERE id = ?", (issue_id,))
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            raise PersistenceError(f"Error deleting issue {issue_id}: {e}") from e

    def set_priorities(self, priorities: Iterable[Tuple[str, int]]) -> Dict[str, bool]:
        """Write priorities one row at a time; each row commits on its own.

        A failure part way leaves earlier rows written. The result maps each
        id to whether its row was updated.
        """
        results: Dict[str, bool] = {}
        now = utc_now().isoformat()
        try:
            conn = _connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Error opening {self.db_path}: {e}") from e
        with conn:
            for issue_id, priority in priorities:
                try:
                    cur = conn.execute(
                        "UPDATE issues SET priority = ?, updated_at = ? WHERE id = ?",
                        (priority, now, issue_id),
                    )
                    conn.commit()
                    results[issue_id] = cur.rowcount > 0
                except sqlite3.Error as e:
                    logger.warning(f"Priority write failed for {issue_id}: {e}")
                    results[issue_id] = False
        return results

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        """Convert a database row to an Issue."""
        data = dict(row)
        if data.get("tags"):
            try:
                data["tags"] = json.loads(data["tags"])
            except (json.JSONDecodeError, TypeError):
                data["tags"] = []
        return Issue.from_dict(data)
