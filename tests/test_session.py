"""
Tests for BacklogSession against a real SQLite store (inline sync).
"""
import json
from unittest.mock import patch

import pytest

from backlog.errors import PersistenceError
from backlog.reconcile import TOP
from backlog.schema import Category
from backlog.session import BacklogSession
from backlog.store import SQLiteIssueStore
from backlog.transfer import InvalidImport

from conftest import ids


@pytest.fixture
def store(db_path):
    return SQLiteIssueStore(db_path)


@pytest.fixture
def session(store):
    s = BacklogSession(store, "acct", "Test", background_sync=False)
    s.load()
    return s


def _stored_order(store):
    return [(i.id, i.priority, i.category) for i in store.list_items("acct")]


def _local_order(session):
    return [(i.id, i.priority, i.category) for i in session.model.sorted_view()]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Load
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_load_new_account_is_empty(session):
    assert session.loaded
    assert len(session.model) == 0
    assert session.current_focus == ""


def test_first_load_with_failing_store_starts_empty(store):
    s = BacklogSession(store, "acct", background_sync=False)
    with patch.object(store, "list_items", side_effect=PersistenceError("down")):
        assert s.load() == []
    assert s.loaded
    assert len(s.model) == 0


def test_reload_with_failing_store_keeps_model(session, store):
    session.add_issue("Keep me")
    with patch.object(store, "list_items", side_effect=PersistenceError("down")):
        session.load()
    assert [i.title for i in session.model.sorted_view()] == ["Keep me"]


def test_reload_reports_divergence(session, store):
    a = session.add_issue("A")
    session.add_issue("B")
    store.update_item(a.id, {"priority": 9, "category": "done"})

    divergences = session.load()
    fields = {(d.issue_id, d.field) for d in divergences}
    assert (a.id, "priority") in fields
    assert (a.id, "category") in fields
    assert session.model.get(a.id).category == Category.DONE


def test_two_sessions_see_each_others_writes(store):
    first = BacklogSession(store, "acct", background_sync=False)
    first.load()
    first.add_issue("From first")
    second = BacklogSession(store, "acct", background_sync=False)
    second.load()
    assert [i.title for i in second.model.sorted_view()] == ["From first"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Issues
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_add_issue_appends_and_persists(session, store):
    a = session.add_issue("A")
    b = session.add_issue("B", category=Category.IN_PROGRESS)
    c = session.add_issue("C")

    assert a.issue_number == "WPM-1"
    assert c.issue_number == "WPM-3"
    assert session.model.is_contiguous()
    assert _stored_order(store) == _local_order(session)
    assert session.view().bucket(Category.PLANNED).issues == [a, c]
    assert ids(session.view().bucket(Category.IN_PROGRESS).issues) == [b.id]


def test_add_issue_at_top(session, store):
    session.add_issue("old0")
    session.add_issue("old1")
    new = session.add_issue("New", position=TOP)
    assert [i.title for i in session.model.sorted_view()] == ["New", "old0", "old1"]
    assert store.get(new.id).priority == 0


def test_add_issue_blank_title(session, store):
    assert session.add_issue("   ") is None
    assert store.list_items("acct") == []


def test_add_issue_store_failure(session, store):
    with patch.object(store, "create_item", side_effect=PersistenceError("full")):
        assert session.add_issue("Nope") is None
    assert len(session.model) == 0


def test_update_issue_never_touches_priority(session, store):
    a = session.add_issue("A")
    session.add_issue("B")
    updated = session.update_issue(a.id, {"title": "A2", "tags": ["x"], "priority": 99})
    assert updated.title == "A2"
    assert updated.priority == 0
    stored = store.get(a.id)
    assert stored.title == "A2"
    assert stored.tags == ["x"]
    assert stored.priority == 0


def test_update_unknown_issue(session):
    assert session.update_issue("ghost", {"title": "x"}) is None


def test_delete_keeps_gaps(session, store):
    a = session.add_issue("A")
    b = session.add_issue("B")
    c = session.add_issue("C")
    assert session.delete_issue(b.id) is True
    assert session.delete_issue(b.id) is False
    assert [(i.id, i.priority) for i in session.model.sorted_view()] == [(a.id, 0), (c.id, 2)]
    assert [i.id for i in store.list_items("acct")] == [a.id, c.id]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_cross_category_move_persists_category(session, store):
    a = session.add_issue("A")
    b = session.add_issue("B", category=Category.IN_PROGRESS)
    result = session.move(a.id, b.id)

    assert result.changed
    assert ids(session.model.sorted_view()) == [b.id, a.id]
    assert store.get(a.id).category == Category.IN_PROGRESS
    assert _stored_order(store) == _local_order(session)
    assert session.check_consistency() == []


def test_move_into_empty_zone(session, store):
    a = session.add_issue("A")
    session.add_issue("B")
    session.move(a.id, "empty-in-review")
    assert store.get(a.id).category == Category.IN_REVIEW
    assert ids(session.view().bucket(Category.IN_REVIEW).issues) == [a.id]


def test_move_unknown_item(session):
    session.add_issue("A")
    assert session.move("ghost", "empty-done") is None


def test_move_cancels_drag_already_in_flight(session):
    a = session.add_issue("A")
    b = session.add_issue("B")
    c = session.add_issue("C")
    assert session.drag_start(a.id)

    result = session.move(c.id, b.id)
    assert result.changed
    assert ids(session.model.sorted_view()) == [a.id, c.id, b.id]
    assert not session.drag.state.is_dragging


def test_move_onto_the_item_of_an_abandoned_drag(session):
    a = session.add_issue("A")
    session.add_issue("B")
    c = session.add_issue("C")
    session.drag_start(a.id)

    session.move(c.id, a.id)
    assert ids(session.model.sorted_view())[0] == c.id


def test_drop_on_deleted_target_is_dropped(session):
    a = session.add_issue("A")
    b = session.add_issue("B", category=Category.IN_REVIEW)
    before = _local_order(session)
    assert session.drag_start(a.id)
    session.delete_issue(b.id)
    assert session.drag_end(b.id) is None
    assert _local_order(session) == [x for x in before if x[0] != b.id]
    assert not session.drag.state.is_dragging


def test_view_during_drag_uses_snapshot(session):
    a = session.add_issue("A")
    session.drag_start(a.id)
    session.model.get(a.id).title = "changed"
    assert session.view().bucket(Category.PLANNED).issues[0].title == "A"
    session.drag_cancel()
    assert session.view().bucket(Category.PLANNED).issues[0].title == "changed"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Filters, focus, import/export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_tag_filters(session):
    session.add_issue("A", tags=["ui"])
    session.add_issue("B", tags=["api"])
    session.toggle_tag("ui")
    assert [i.title for i in session.view().flat()] == ["A"]
    session.toggle_tag("api")
    assert [i.title for i in session.view().flat()] == ["A", "B"]
    session.set_tag_filter([])
    session.set_show_done(True)
    assert len(session.view().buckets) == 4


def test_focus_is_persisted(session, store):
    session.set_focus("Finish the importer")
    assert store.get_focus("acct") == "Finish the importer"
    assert session.export()["currentFocusText"] == "Finish the importer"


def test_export_then_import_as_new(session, store):
    session.add_issue("A", tags=["x"])
    session.add_issue("B", category=Category.IN_REVIEW)
    session.add_issue("C", tags=["y", "z"])
    exported = session.export()

    imported = session.import_issues(json.dumps(exported), as_new=True)

    assert len(imported) == 3
    assert len(session.model) == 6
    original_ids = {r["id"] for r in exported["items"]}
    assert not original_ids & {i.id for i in imported}
    assert [(i.title, i.category, i.tags) for i in imported] == [
        (r["title"], Category(r["category"]), r["tags"]) for r in exported["items"]
    ]
    assert [i.title for i in session.model.sorted_view()] == ["A", "B", "C", "A", "B", "C"]
    assert session.model.is_contiguous()
    assert _stored_order(store) == _local_order(session)


def test_import_upserts_known_ids(session, store):
    a = session.add_issue("A")
    payload = [{"id": a.id, "title": "A renamed"}, {"title": "Fresh"}]
    session.import_issues(payload)
    assert len(session.model) == 2
    assert store.get(a.id).title == "A renamed"
    assert [i.title for i in session.model.sorted_view()] == ["A renamed", "Fresh"]


def test_import_applies_defaults(session):
    issues = session.import_issues('{"tags": ["t"]}')
    assert issues[0].title == "Untitled Issue"
    assert issues[0].category == Category.PLANNED
    assert issues[0].comment_count == 0


def test_import_rejects_garbage(session):
    with pytest.raises(InvalidImport):
        session.import_issues("not json at all")


def test_close_flushes(session):
    assert session.close(timeout=1) is True
