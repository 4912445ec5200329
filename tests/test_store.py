"""
Tests for the SQLite issue store.
"""
import tempfile
from pathlib import Path

import pytest

from backlog.errors import PersistenceError
from backlog.schema import Category
from backlog.store import SQLiteIssueStore


def _store(db_path, account="acct"):
    store = SQLiteIssueStore(db_path)
    store.ensure_account(account, "Test account")
    return store


def test_issue_numbers_are_per_account_and_monotonic(db_path):
    store = _store(db_path)
    store.ensure_account("other")
    assert store.next_issue_number("acct") == "WPM-1"
    assert store.next_issue_number("acct") == "WPM-2"
    assert store.next_issue_number("other") == "WPM-1"


def test_ensure_account_is_idempotent(db_path):
    store = _store(db_path)
    store.next_issue_number("acct")
    store.ensure_account("acct", "Renamed")
    assert store.next_issue_number("acct") == "WPM-2"


def test_custom_issue_prefix(db_path):
    store = SQLiteIssueStore(db_path, issue_prefix="BUG")
    store.ensure_account("acct")
    assert store.next_issue_number("acct") == "BUG-1"


def test_create_assigns_id_and_number(db_path):
    store = _store(db_path)
    issue = store.create_item("acct", {"title": "Write docs", "tags": ["docs", "ux"]})
    assert issue.id
    assert issue.issue_number == "WPM-1"
    assert issue.category == Category.PLANNED

    stored = store.get(issue.id)
    assert stored.title == "Write docs"
    assert stored.tags == ["docs", "ux"]
    assert stored.account_id == "acct"


def test_create_keeps_given_id(db_path):
    store = _store(db_path)
    issue = store.create_item("acct", {"id": "fixed-id", "title": "x"})
    assert issue.id == "fixed-id"
    assert store.get("fixed-id") is not None


def test_create_for_unknown_account_fails(db_path):
    store = _store(db_path)
    with pytest.raises(PersistenceError):
        store.create_item("nobody", {"title": "orphan"})


def test_create_duplicate_id_fails(db_path):
    store = _store(db_path)
    store.create_item("acct", {"id": "dup", "title": "one"})
    with pytest.raises(PersistenceError):
        store.create_item("acct", {"id": "dup", "title": "two"})


def test_list_items_ordered_by_priority(db_path):
    store = _store(db_path)
    store.create_item("acct", {"id": "c", "title": "c", "priority": 2})
    store.create_item("acct", {"id": "a", "title": "a", "priority": 0})
    store.create_item("acct", {"id": "b", "title": "b", "priority": 1})
    assert [i.id for i in store.list_items("acct")] == ["a", "b", "c"]


def test_list_items_empty_account(db_path):
    store = _store(db_path)
    assert store.list_items("acct") == []
    assert store.list_items("never-created") == []


def test_update_item(db_path):
    store = _store(db_path)
    issue = store.create_item("acct", {"title": "old"})
    updated = store.update_item(issue.id, {"title": "new", "category": "in-review", "tags": ["a"]})
    assert updated.title == "new"
    assert updated.category == Category.IN_REVIEW
    assert updated.tags == ["a"]
    assert updated.updated_at >= issue.updated_at


def test_update_unknown_returns_none(db_path):
    store = _store(db_path)
    assert store.update_item("missing", {"title": "x"}) is None


def test_delete_item(db_path):
    store = _store(db_path)
    issue = store.create_item("acct", {"title": "gone soon"})
    assert store.delete_item(issue.id) is True
    assert store.delete_item(issue.id) is False
    assert store.get(issue.id) is None


def test_set_priorities_reports_per_row(db_path):
    store = _store(db_path)
    store.create_item("acct", {"id": "a", "title": "a", "priority": 0})
    store.create_item("acct", {"id": "b", "title": "b", "priority": 1})
    results = store.set_priorities([("b", 0), ("missing", 1), ("a", 2)])
    assert results == {"b": True, "missing": False, "a": True}
    assert [i.id for i in store.list_items("acct")] == ["b", "a"]


def test_focus_text(db_path):
    store = _store(db_path)
    assert store.get_focus("acct") == ""
    assert store.set_focus("acct", "Ship the importer") is True
    assert store.get_focus("acct") == "Ship the importer"
    assert store.set_focus("nobody", "x") is False
    assert store.get_focus("nobody") == ""


def test_schema_survives_reopen():
    """Opening an existing DB keeps its rows"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    try:
        store = _store(db_path)
        store.create_item("acct", {"id": "keep", "title": "persisted"})

        reopened = SQLiteIssueStore(db_path)
        assert reopened.get("keep").title == "persisted"
        assert reopened.next_issue_number("acct") == "WPM-2"

    finally:
        for suffix in ("", "-wal", "-shm"):
            Path(db_path + suffix).unlink(missing_ok=True)


def test_get_account(db_path):
    store = _store(db_path)
    store.next_issue_number("acct")
    store.set_focus("acct", "Now")
    account = store.get_account("acct")
    assert account.name == "Test account"
    assert account.issue_counter == 1
    assert account.current_focus == "Now"
    assert store.get_account("nobody") is None
