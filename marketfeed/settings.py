import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketfeed.services.retry import RetryPolicy
from marketfeed.services.ttl import TTLPolicy

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Fresh-tier TTLs (seconds)
    ttl_realtime: int = Field(default=60, alias="CACHE_TTL_REALTIME", gt=0)
    ttl_short: int = Field(default=120, alias="CACHE_TTL_SHORT", gt=0)
    ttl_medium: int = Field(default=300, alias="CACHE_TTL_MEDIUM", gt=0)
    ttl_long: int = Field(default=600, alias="CACHE_TTL_LONG", gt=0)
    ttl_extended: int = Field(default=900, alias="CACHE_TTL_EXTENDED", gt=0)

    # Stale tier retention (seconds)
    stale_ttl: int = Field(default=3600, alias="CACHE_STALE_TTL", gt=0)

    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")
    sweep_interval_seconds: int = Field(default=300, alias="CACHE_SWEEP_INTERVAL", gt=0)

    # Retry Configuration
    max_retries: int = Field(default=3, alias="MAX_RETRIES", ge=0)
    max_rate_limit_retries: int = Field(default=6, alias="MAX_RATE_LIMIT_RETRIES", ge=0)
    retry_base_delay: float = Field(default=0.5, alias="RETRY_BASE_DELAY", ge=0)
    rate_limit_base_delay: float = Field(default=2.0, alias="RATE_LIMIT_BASE_DELAY", ge=0)
    retry_max_delay: float = Field(default=30.0, alias="RETRY_MAX_DELAY", gt=0)
    retry_jitter: float = Field(default=0.1, alias="RETRY_JITTER", ge=0, le=1)

    # Upstream Configuration
    request_timeout: float = Field(default=10.0, alias="REQUEST_TIMEOUT", gt=0)
    coingecko_api_key: str = Field(default="", alias="COINGECKO_API_KEY")
    cryptocompare_api_key: str = Field(default="", alias="CRYPTOCOMPARE_API_KEY")
    cryptocompare_pacing_delay: float = Field(
        default=1.0, alias="CRYPTOCOMPARE_PACING_DELAY", ge=0
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _stale_outlives_fresh(self) -> "Settings":
        longest = max(self.ttl_policies().values())
        if timedelta(seconds=self.stale_ttl) <= longest:
            raise ValueError(
                f"CACHE_STALE_TTL ({self.stale_ttl}s) must be longer than every "
                f"fresh TTL (longest is {longest.total_seconds():.0f}s)"
            )
        return self

    def ttl_policies(self) -> dict[TTLPolicy, timedelta]:
        return {
            TTLPolicy.REALTIME: timedelta(seconds=self.ttl_realtime),
            TTLPolicy.SHORT: timedelta(seconds=self.ttl_short),
            TTLPolicy.MEDIUM: timedelta(seconds=self.ttl_medium),
            TTLPolicy.LONG: timedelta(seconds=self.ttl_long),
            TTLPolicy.EXTENDED: timedelta(seconds=self.ttl_extended),
        }

    def ttl_for(self, policy: TTLPolicy) -> timedelta:
        return self.ttl_policies()[policy]

    @property
    def stale_retention(self) -> timedelta:
        return timedelta(seconds=self.stale_ttl)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            max_rate_limit_retries=self.max_rate_limit_retries,
            base_delay=self.retry_base_delay,
            rate_limit_base_delay=self.rate_limit_base_delay,
            max_delay=self.retry_max_delay,
            jitter=self.retry_jitter,
            attempt_timeout=self.request_timeout,
        )


global_settings = Settings.model_validate(dict(os.environ))
