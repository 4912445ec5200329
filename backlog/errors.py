"""
Exceptions raised by the backlog engine.

None of these are fatal: callers log them and continue with the best-known
local state.
"""


class BacklogError(Exception):
    """Base class for all backlog errors."""
    pass


class ItemNotFound(BacklogError):
    """Raised when an operation references an issue id that is not loaded."""

    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} not found")
        self.issue_id = issue_id


class PersistenceError(BacklogError):
    """Raised when the backing store rejects or fails a write or read."""
    pass


class EmptyAccount(BacklogError):
    """Raised by OrderModel.load() when there is no item source at all.

    Treated as "no items", never as a failure.
    """
    pass
