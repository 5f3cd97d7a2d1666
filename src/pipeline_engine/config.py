"""Environment-based configuration for the pipeline engine."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class Settings:
    """Engine configuration loaded from environment variables."""

    def __init__(self):
        self.data_path = Path(os.getenv(
            "PIPELINE_DATA_PATH",
            str(Path.home() / ".td-pipeline-engine" / "transactions.json"),
        ))
        self.log_level = os.getenv("PIPELINE_LOG_LEVEL", "INFO").upper()
        self.upcoming_days = int(os.getenv("PIPELINE_UPCOMING_DAYS", "7"))
        self.due_soon_days = int(os.getenv("PIPELINE_DUE_SOON_DAYS", "3"))
        if self.due_soon_days < 0:
            raise RuntimeError("PIPELINE_DUE_SOON_DAYS must be zero or positive")


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Drop cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
