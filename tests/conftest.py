"""Shared test fixtures for the backlog engine tests."""

import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the project root is importable (backlog/, backlog_server.py)
sys.path.insert(0, str(Path(__file__).parent.parent))

from backlog.schema import Category, Issue


def make_issue(issue_id, category=Category.PLANNED, priority=0, tags=None, title=None):
    """Build an Issue with just the fields ordering cares about."""
    return Issue(
        id=issue_id,
        account_id="acct",
        issue_number=f"WPM-{issue_id}",
        title=title or f"Issue {issue_id}",
        category=category,
        priority=priority,
        tags=list(tags or []),
    )


def ids(issues):
    return [i.id for i in issues]


@pytest.fixture
def db_path():
    """Temporary SQLite DB path, removed with its WAL files afterwards."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        path = tmp.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        Path(path + suffix).unlink(missing_ok=True)
