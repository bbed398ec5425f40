"""Dispatch tuning configuration and environment settings."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".lead-dispatch"

# Platform status tags that mean "ready to take a call".
DEFAULT_AVAILABLE_STATUSES = ["online", "available", "ready", "idle"]


class Settings:
    """Runtime settings loaded from environment variables."""

    def __init__(self):
        self.cloudtalk_key_id = os.getenv("CLOUDTALK_API_KEY_ID", "")
        self.cloudtalk_secret = os.getenv("CLOUDTALK_API_SECRET", "")
        self.cloudtalk_base_url = os.getenv("CLOUDTALK_BASE_URL", "https://my.cloudtalk.io/api")
        self.data_dir = Path(os.getenv("LEAD_DISPATCH_DATA_DIR", str(DEFAULT_DATA_DIR)))
        self.log_level = os.getenv("LEAD_DISPATCH_LOG_LEVEL", "INFO").upper()

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / "agent-distribution-state.json"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs" / "lead-distribution"

    @property
    def config_path(self) -> Path:
        return self.data_dir / "dispatch_config.json"

    def require_cloudtalk_credentials(self):
        """Fail loudly before any request is made without credentials."""
        if not self.cloudtalk_key_id or not self.cloudtalk_secret:
            raise RuntimeError(
                "CLOUDTALK_API_KEY_ID and CLOUDTALK_API_SECRET environment variables are required."
            )


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read the environment (used by the CLI and tests)."""
    global _settings
    _settings = Settings()
    return _settings


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()


@dataclass
class DispatchConfig:
    """Tunable knobs for probing, dispatch and the audit log."""

    # Availability probing
    available_statuses: List[str] = field(default_factory=lambda: list(DEFAULT_AVAILABLE_STATUSES))
    probe_cache_ttl: float = 30.0  # seconds
    recent_call_window_minutes: int = 5
    recent_call_limit: int = 50

    # Remote calls
    request_timeout: float = 15.0  # seconds

    # Ledger
    history_cap: int = 50
    ledger_max_retries: int = 3
    ledger_retry_backoff: float = 0.05  # seconds, doubled per retry

    # Event log
    log_retention_days: int = 30

    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "available_statuses": self.available_statuses,
            "probe_cache_ttl": self.probe_cache_ttl,
            "recent_call_window_minutes": self.recent_call_window_minutes,
            "recent_call_limit": self.recent_call_limit,
            "request_timeout": self.request_timeout,
            "history_cap": self.history_cap,
            "ledger_max_retries": self.ledger_max_retries,
            "ledger_retry_backoff": self.ledger_retry_backoff,
            "log_retention_days": self.log_retention_days,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DispatchConfig":
        defaults = cls()
        return cls(
            available_statuses=data.get("available_statuses") or defaults.available_statuses,
            probe_cache_ttl=data.get("probe_cache_ttl", defaults.probe_cache_ttl),
            recent_call_window_minutes=data.get(
                "recent_call_window_minutes", defaults.recent_call_window_minutes
            ),
            recent_call_limit=data.get("recent_call_limit", defaults.recent_call_limit),
            request_timeout=data.get("request_timeout", defaults.request_timeout),
            history_cap=data.get("history_cap", defaults.history_cap),
            ledger_max_retries=data.get("ledger_max_retries", defaults.ledger_max_retries),
            ledger_retry_backoff=data.get("ledger_retry_backoff", defaults.ledger_retry_backoff),
            log_retention_days=data.get("log_retention_days", defaults.log_retention_days),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else datetime.now(),
        )


class DispatchConfigManager:
    """Load and persist the dispatch configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or settings.config_path
        self.config = self._load_config()

    def _load_config(self) -> DispatchConfig:
        """Load configuration from file, falling back to defaults."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    return DispatchConfig.from_dict(json.load(f))
            except (OSError, ValueError) as e:
                logger.error(f"Error loading dispatch config: {e}")

        return DispatchConfig()

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.config.to_dict(), f, indent=2)

    def set_available_statuses(self, statuses: List[str]):
        """Replace the allow-list of dispatchable status tags."""
        self.config.available_statuses = [s.strip().lower() for s in statuses if s.strip()]
        self.config.updated_at = datetime.now()
        self.save_config()

    def update(self, **values):
        """Update scalar settings by name."""
        for key, value in values.items():
            if not hasattr(self.config, key) or key == "updated_at":
                raise KeyError(f"Unknown dispatch setting: {key}")
            setattr(self.config, key, value)
        self.config.updated_at = datetime.now()
        self.save_config()
