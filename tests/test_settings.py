"""
Tests for environment driven settings.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from marketfeed.services import TTLPolicy
from marketfeed.settings import Settings


def test_defaults():
    settings = Settings()

    assert settings.ttl_for(TTLPolicy.REALTIME) == timedelta(minutes=1)
    assert settings.ttl_for(TTLPolicy.EXTENDED) == timedelta(minutes=15)
    assert settings.stale_retention == timedelta(hours=1)
    assert settings.cryptocompare_pacing_delay == 1.0


def test_reads_environment_aliases():
    settings = Settings.model_validate(
        {
            "CACHE_TTL_SHORT": "90",
            "CACHE_STALE_TTL": "7200",
            "MAX_RETRIES": "5",
            "CACHE_DEBUG": "true",
            "UNRELATED_VARIABLE": "ignored",
        }
    )

    assert settings.ttl_for(TTLPolicy.SHORT) == timedelta(seconds=90)
    assert settings.stale_retention == timedelta(hours=2)
    assert settings.max_retries == 5
    assert settings.cache_debug is True


def test_field_names_also_accepted():
    assert Settings(ttl_medium=240).ttl_for(TTLPolicy.MEDIUM) == timedelta(minutes=4)


def test_stale_must_outlive_every_fresh_ttl():
    with pytest.raises(ValidationError):
        Settings.model_validate({"CACHE_STALE_TTL": "900"})


def test_non_positive_ttl_rejected():
    with pytest.raises(ValidationError):
        Settings.model_validate({"CACHE_TTL_SHORT": "0"})


def test_retry_policy_mapping():
    settings = Settings.model_validate(
        {
            "MAX_RETRIES": "2",
            "RETRY_BASE_DELAY": "1.5",
            "RETRY_JITTER": "0",
            "REQUEST_TIMEOUT": "4",
        }
    )
    policy = settings.retry_policy()

    assert policy.max_retries == 2
    assert policy.base_delay == 1.5
    assert policy.jitter == 0
    assert policy.attempt_timeout == 4.0
    assert policy.max_rate_limit_retries == 6
