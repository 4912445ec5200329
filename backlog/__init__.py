# Backlog system: priority ordering, drag reconciliation, and store sync
#
# Components:
#   schema.py      - Data model (Issue, Category, Account)
#   order.py       - In-memory total order over an account's issues
#   view.py        - Filtered, per-category projection for display
#   drag.py        - Drag state machine that classifies drops into move intents
#   reconcile.py   - Applies move intents and reindexes priorities
#   store.py       - SQLite persistence layer
#   rest_store.py  - HTTP record-store client
#   sync.py        - Outbox that writes reconciled state to a store
#   transfer.py    - JSON import/export
#   session.py     - Per-account context tying the above together
#   config.py      - YAML + environment configuration
