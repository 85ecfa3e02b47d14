"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, debug=True, **overrides)


def test_cors_origins_from_comma_string():
    settings = _settings(cors_allowed_origins="https://inspi.app, https://admin.inspi.app,")

    assert settings.cors_allowed_origins == ["https://inspi.app", "https://admin.inspi.app"]


def test_code_pattern_follows_length():
    assert _settings(invite_code_length=10).invite_code_pattern == r"^[A-Z0-9]{10}$"


@pytest.mark.parametrize(
    "overrides",
    [
        {"invite_code_length": 4},
        {"invite_code_length": 20},
        {"fraud_ip_frequency_limit": 0},
        {"fraud_batch_count_threshold": 0},
    ],
)
def test_rejects_unusable_limits(overrides):
    with pytest.raises(ValidationError):
        _settings(**overrides)


def test_default_secret_refused_outside_debug():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, debug=False, jwt_secret_key="changeme-generate-a-secure-key")
