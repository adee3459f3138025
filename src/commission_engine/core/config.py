"""Environment-based configuration for the commission engine."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Engine configuration loaded from environment variables."""

    def __init__(self):
        self.data_path = Path(os.getenv(
            "COMMISSION_DATA_PATH",
            str(Path.home() / ".commission-engine"),
        )).expanduser()
        self.log_level = os.getenv("COMMISSION_LOG_LEVEL", "INFO").upper()
        self.seed_defaults = _env_flag("COMMISSION_SEED_DEFAULTS", "true")

        # Actor recorded on rule changes made without an explicit user
        self.system_user_id = os.getenv("COMMISSION_SYSTEM_USER_ID", "system")
        self.system_user_name = os.getenv("COMMISSION_SYSTEM_USER_NAME", "System")


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.debug(f"Loaded settings (data path: {_settings.data_path})")
    return _settings


def reload_settings() -> Settings:
    """Drop the cached settings and read the environment again."""
    global _settings
    _settings = None
    return _get_settings()


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
