#!/usr/bin/env python3
"""
Backlog Server
--------------
JSON API over the backlog ordering engine. One BacklogSession is kept per
account for the life of the process; the store behind it is chosen by
backlog.yaml / BACKLOG_* environment variables.

Usage:
    python backlog_server.py --port 3000
    python backlog_server.py --config ./backlog.yaml --db /tmp/backlog.db

API (writes need an X-API-Key header matching BACKLOG_API_SECRET):
    GET    /api/accounts/<acct>                 → account row + issue count
    GET    /api/accounts/<acct>/board?tags=a,b&show_done=1  → grouped board (filters per request)
    POST   /api/accounts/<acct>/issues          { title, category?, position?, description?, tags? }
    PUT    /api/accounts/<acct>/issues/<id>     { title?, description?, category?, tags?, ... }
    DELETE /api/accounts/<acct>/issues/<id>
    POST   /api/accounts/<acct>/drag            { item_id, target }  target = issue id | "empty-<category>"
    POST   /api/accounts/<acct>/reload          → { divergences }
    POST   /api/accounts/<acct>/import?as_new=1 JSON export / array of records
    GET    /api/accounts/<acct>/export          → { items, currentFocusText }
    PUT    /api/accounts/<acct>/focus           { text }
    GET    /api/accounts/<acct>/sync            → outbox status + consistency check
    GET    /health
"""

import hmac
import logging
import os
import sys
import threading
from functools import wraps
from typing import Dict

from flask import Flask, jsonify, request

from backlog.config import Config
from backlog.errors import PersistenceError
from backlog.reconcile import BOTTOM, TOP
from backlog.schema import Category
from backlog.session import BacklogSession
from backlog.transfer import InvalidImport

logger = logging.getLogger("backlog_server")

app = Flask(__name__)

# ── Auth ─────────────────────────────────────────────────────────────────────

API_SECRET = os.environ.get("BACKLOG_API_SECRET", "")


def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = app.config.get("API_SECRET", API_SECRET)
        if not secret:
            return jsonify({"error": "API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Sessions ─────────────────────────────────────────────────────────────────

_sessions: Dict[str, BacklogSession] = {}
_sessions_lock = threading.Lock()
_store = None


def get_config() -> Config:
    cfg = app.config.get("BACKLOG_CONFIG")
    if cfg is None:
        cfg = Config.load()
        app.config["BACKLOG_CONFIG"] = cfg
    return cfg


def get_store():
    global _store
    if _store is None:
        _store = get_config().make_store()
    return _store


def get_session(account_id: str) -> BacklogSession:
    """Session for an account, loaded on first use."""
    with _sessions_lock:
        session = _sessions.get(account_id)
        if session is None:
            cfg = get_config()
            session = BacklogSession(get_store(), account_id,
                                     background_sync=cfg.sync_in_background)
            session.load()
            _sessions[account_id] = session
        return session


def reset_sessions():
    """Flush and forget all sessions (tests, config changes)."""
    global _store
    with _sessions_lock:
        for session in _sessions.values():
            session.close(timeout=5)
        _sessions.clear()
        _store = None


def _json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


# ── Routes ───────────────────────────────────────────────────────────────────

@app.route("/api/accounts/<account_id>")
def api_account(account_id):
    session = get_session(account_id)
    try:
        account = session.store.get_account(account_id)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 502
    if account is None:
        return jsonify({"error": "Account not found"}), 404
    data = account.to_dict()
    with session.lock:
        data["issue_count"] = len(session.model)
        data["unsynced"] = sorted(session.sync.unsynced_ids())
    return jsonify(data)


@app.route("/api/accounts/<account_id>/board")
def api_board(account_id):
    """Filters apply to this request only; the session's own are untouched."""
    tags = [t for t in request.args.get("tags", "").split(",") if t]
    show_done = _truthy(request.args.get("show_done"))
    session = get_session(account_id)
    with session.lock:
        board = session.view(selected_tags=tags, show_done=show_done).to_dict()
        board["current_focus"] = session.current_focus
    board["account_id"] = account_id
    return jsonify(board)


@app.route("/api/accounts/<account_id>/issues", methods=["POST"])
@require_api_key
def api_create_issue(account_id):
    """Create an issue at the end (default), top or bottom of a category."""
    data = _json_body()
    title = (data.get("title") or "").strip()
    if not title:
        return jsonify({"error": "title is required"}), 400
    position = data.get("position")
    if position is not None and position not in (TOP, BOTTOM):
        return jsonify({"error": f"position must be '{TOP}' or '{BOTTOM}'"}), 400
    tags = data.get("tags") or []
    if not isinstance(tags, list):
        return jsonify({"error": "tags must be a list"}), 400

    session = get_session(account_id)
    with session.lock:
        issue = session.add_issue(
            title,
            category=Category.from_str(data.get("category")),
            position=position,
            description=data.get("description", ""),
            tags=tags,
        )
    if issue is None:
        return jsonify({"error": "Store rejected the new issue"}), 502
    return jsonify({"issue": issue.to_dict(), "id": issue.id}), 201


@app.route("/api/accounts/<account_id>/issues/<issue_id>", methods=["PUT"])
@require_api_key
def api_update_issue(account_id, issue_id):
    data = _json_body()
    if "tags" in data and not isinstance(data["tags"], list):
        return jsonify({"error": "tags must be a list"}), 400
    session = get_session(account_id)
    with session.lock:
        issue = session.update_issue(issue_id, data)
    if issue is None:
        return jsonify({"error": "Issue not found"}), 404
    return jsonify({"issue": issue.to_dict()})


@app.route("/api/accounts/<account_id>/issues/<issue_id>", methods=["DELETE"])
@require_api_key
def api_delete_issue(account_id, issue_id):
    session = get_session(account_id)
    with session.lock:
        deleted = session.delete_issue(issue_id)
    if not deleted:
        return jsonify({"error": "Issue not found"}), 404
    return jsonify({"deleted": issue_id})


@app.route("/api/accounts/<account_id>/drag", methods=["POST"])
@require_api_key
def api_drag(account_id):
    """Apply one complete drag: pick up item_id, drop on target."""
    data = _json_body()
    item_id = (data.get("item_id") or "").strip()
    if not item_id:
        return jsonify({"error": "item_id is required"}), 400
    session = get_session(account_id)
    with session.lock:
        if item_id not in session.model:
            return jsonify({"error": "Issue not found"}), 404
        result = session.move(item_id, data.get("target"))
        board = session.view().to_dict()
    return jsonify({
        "applied": result is not None,
        "changed": bool(result and result.changed),
        "board": board,
    })


@app.route("/api/accounts/<account_id>/reload", methods=["POST"])
@require_api_key
def api_reload(account_id):
    session = get_session(account_id)
    with session.lock:
        divergences = session.load()
    return jsonify({"divergences": [d.to_dict() for d in divergences]})


@app.route("/api/accounts/<account_id>/import", methods=["POST"])
@require_api_key
def api_import(account_id):
    content = request.get_data(as_text=True)
    if not content.strip():
        return jsonify({"error": "empty import"}), 400
    session = get_session(account_id)
    try:
        with session.lock:
            issues = session.import_issues(content, as_new=_truthy(request.args.get("as_new")))
    except InvalidImport as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"imported": len(issues), "ids": [i.id for i in issues]})


@app.route("/api/accounts/<account_id>/export")
def api_export(account_id):
    session = get_session(account_id)
    with session.lock:
        payload = session.export()
    return jsonify(payload)


@app.route("/api/accounts/<account_id>/focus", methods=["PUT"])
@require_api_key
def api_focus(account_id):
    data = _json_body()
    text = data.get("text", "")
    if not isinstance(text, str):
        return jsonify({"error": "text must be a string"}), 400
    session = get_session(account_id)
    with session.lock:
        session.set_focus(text)
        focus = session.current_focus
    return jsonify({"current_focus": focus})


@app.route("/api/accounts/<account_id>/sync")
def api_sync(account_id):
    session = get_session(account_id)
    with session.lock:
        status = session.sync.status()
        status["divergences"] = [d.to_dict() for d in session.check_consistency()]
    return jsonify(status)


@app.route("/health")
def health():
    cfg = get_config()
    try:
        get_store()
        store_ok = True
    except (PersistenceError, ValueError) as e:
        logger.warning(f"Store unavailable: {e}")
        store_ok = False
    return jsonify({
        "status": "ok" if store_ok else "degraded",
        "store": cfg.store,
        "accounts": sorted(_sessions),
    })


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Backlog Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--config", help="Path to backlog.yaml")
    parser.add_argument("--db", help="Path to the SQLite DB (overrides BACKLOG_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["BACKLOG_DB"] = args.db

    config = Config.load(args.config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [backlog] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    app.config["BACKLOG_CONFIG"] = config

    logger.info(f"Backlog server on http://{args.host}:{args.port} (store={config.store})")
    if config.store == "sqlite":
        logger.info(f"DB: {config.db_path}")
    app.run(host=args.host, port=args.port, debug=False, threaded=True)
