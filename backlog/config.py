# Backlog configuration
# Override via backlog.yaml, a --config path, or BACKLOG_* environment variables.

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

CONFIG_PATH = Path(__file__).parent.parent / "backlog.yaml"

logger = logging.getLogger(__name__)

# env var -> Config attribute
ENV_OVERRIDES = {
    "BACKLOG_DB": "db_path",
    "BACKLOG_STORE": "store",
    "BACKLOG_STORE_URL": "store_url",
    "BACKLOG_API_KEY": "store_api_key",
    "BACKLOG_ACCOUNT": "default_account",
}


@dataclass
class Config:
    """Runtime configuration for the backlog engine and server."""

    # Store: "sqlite" (local file) or "rest" (remote record store)
    store: str = "sqlite"
    db_path: str = "~/.local/share/backlog/backlog.db"
    store_url: Optional[str] = None
    store_api_key: str = ""
    http_timeout: float = 5.0

    # Accounts
    default_account: str = "default"
    issue_prefix: str = "WPM"

    # Sync: False writes inline (scripts, tests)
    sync_in_background: bool = True

    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in file paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ=None):
        env = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            value = env.get(var)
            if value:
                setattr(self, attr, value)

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except Exception as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg

    def make_store(self):
        """Build the configured store."""
        if self.store == "rest":
            from .rest_store import RestIssueStore
            if not self.store_url:
                raise ValueError("store 'rest' needs store_url (or BACKLOG_STORE_URL)")
            return RestIssueStore(self.store_url, api_key=self.store_api_key,
                                  timeout=self.http_timeout, issue_prefix=self.issue_prefix)
        from .store import SQLiteIssueStore
        return SQLiteIssueStore(self.db_path, issue_prefix=self.issue_prefix)
