"""Application configuration helpers."""

from __future__ import annotations

from licensesync.common.logging import configure_logging

from .env import env_bool, env_int, env_list, env_str, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .external_api import ExternalApiConfig, get_external_api_config
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .storage import DatabaseConfig, default_data_dir, get_database_config
from .sync import (
    DEFAULT_SYNC_BATCH_SIZE,
    MAX_SYNC_BATCH_SIZE,
    ScheduleConfig,
    SyncConfig,
    get_schedule_config,
    get_sync_config,
)

__all__ = [
    "DEFAULT_SYNC_BATCH_SIZE",
    "MAX_SYNC_BATCH_SIZE",
    "ConfigurationError",
    "DatabaseConfig",
    "ExternalApiConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "ScheduleConfig",
    "SyncConfig",
    "configure_logging",
    "default_data_dir",
    "env_bool",
    "env_int",
    "env_list",
    "env_str",
    "get_database_config",
    "get_external_api_config",
    "get_schedule_config",
    "get_sync_config",
    "require_env_vars",
]
