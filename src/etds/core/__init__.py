"""ETDS core module.

Shared components used across all services:
- Configuration management
- Cached settings accessor
"""

from etds.core.config import (
    AuthSettings,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    S3Settings,
    Settings,
    WorkflowSettings,
)
from etds.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "AuthSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "S3Settings",
    "Settings",
    "WorkflowSettings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
