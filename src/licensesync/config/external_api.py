"""External license API configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_int, env_str, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DEFAULT_API_BASE_URL = "http://localhost:3001"
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RATE_LIMIT_PER_SECOND = 10


@dataclass(frozen=True, slots=True)
class ExternalApiConfig:
    """Connection settings for the external license system of record."""

    base_url: str
    api_key: str
    resilience: ResilienceConfig

    @property
    def timeout_seconds(self) -> float:
        return self.resilience.timeout_seconds


def get_external_api_config(*, resilience: ResilienceConfig | None = None) -> ExternalApiConfig:
    values = require_env_vars(("EXTERNAL_LICENSE_API_KEY",))
    base_url = env_str("EXTERNAL_LICENSE_API_URL", DEFAULT_API_BASE_URL).rstrip("/")
    timeout_ms = env_int("EXTERNAL_LICENSE_API_TIMEOUT_MS", DEFAULT_TIMEOUT_MS, minimum=1)
    attempts = env_int("LICENSE_SYNC_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, minimum=0)
    per_second = env_int(
        "LICENSE_SYNC_RATE_LIMIT_PER_SECOND", DEFAULT_RATE_LIMIT_PER_SECOND, minimum=1
    )
    return ExternalApiConfig(
        base_url=base_url,
        api_key=values["EXTERNAL_LICENSE_API_KEY"],
        resilience=resilience
        or ResilienceConfig(
            name="external-licenses",
            base_url=base_url,
            timeout_seconds=timeout_ms / 1000,
            retry=RetryPolicy(total=attempts),
            ratelimit=RateLimit(max_calls=per_second, per_seconds=1.0),
        ),
    )
