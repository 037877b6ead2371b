"""Tests for settings validation and provider mode resolution."""

import pytest
from pydantic import ValidationError

from sophia.config import Settings, get_settings, reset_settings_cache
from sophia.config.provider_modes import effective_llama_stack_provider


def test_test_environment_uses_fake_provider():
    assert effective_llama_stack_provider(get_settings()) == "fake"


def test_threshold_out_of_range_is_rejected():
    with pytest.raises(ValidationError):
        Settings(sentry_confidence_threshold=1.5)


def test_deferred_limits_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(deferred_max_topics=0)


def test_default_api_key_refused_in_production(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    with pytest.raises(ValidationError):
        Settings(api_key="dev-api-key")
    assert Settings(api_key="a-real-secret").api_key == "a-real-secret"


def test_env_override_after_cache_reset(monkeypatch):
    monkeypatch.setenv("MACHINE_SIGNAL_THRESHOLD", "0.8")
    reset_settings_cache()
    try:
        assert get_settings().machine_signal_threshold == 0.8
    finally:
        monkeypatch.delenv("MACHINE_SIGNAL_THRESHOLD")
        reset_settings_cache()


@pytest.mark.parametrize(
    "provider, use_fake, expected",
    [
        ("real", False, "real"),
        ("real", True, "fake"),
        ("off", True, "off"),
        ("bogus", False, "real"),
    ],
)
def test_effective_provider(provider, use_fake, expected):
    class _Stub:
        llama_stack_provider = provider
        use_fake_providers = use_fake

    assert effective_llama_stack_provider(_Stub()) == expected
