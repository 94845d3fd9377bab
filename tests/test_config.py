"""Unit tests for core/config.py -- Settings validation.

Covers:
- Defaults for token lifetimes, cost and sweep interval
- SECRET_KEY policy: generated in DEBUG, required otherwise, minimum length
- Environment variable mapping, including JSON list fields
- Range checks on TTLs
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Drop variables conftest sets so each test starts from the documented defaults."""
    for name in ("DEBUG", "SECRET_KEY", "RATE_LIMIT_ENABLED", "SWEEP_INTERVAL_SECONDS", "ALLOWED_HOSTS"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_documented_defaults(self) -> None:
        s = _settings(secret_key=GOOD_KEY)
        assert s.debug is False
        assert s.database_url == "sqlite:///./authgate.db"
        assert s.access_token_ttl_seconds == 900
        assert s.refresh_token_ttl_seconds == 604800
        assert s.bcrypt_cost == 10
        assert s.token_issuer == "auth"
        assert s.revoke_family_on_replay is False
        assert s.sweep_interval_seconds == 3600
        assert s.rate_limit_enabled is True

    def test_secret_key_hidden_from_repr(self) -> None:
        assert GOOD_KEY not in repr(_settings(secret_key=GOOD_KEY))


class TestSecretKeyPolicy:
    def test_missing_key_in_production_fails(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            _settings()

    def test_debug_generates_key(self) -> None:
        s = _settings(debug=True)
        assert len(s.secret_key) >= 32

    def test_generated_keys_differ(self) -> None:
        assert _settings(debug=True).secret_key != _settings(debug=True).secret_key

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            _settings(secret_key="too-short")

    def test_short_key_rejected_in_debug_too(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            _settings(debug=True, secret_key="too-short")


class TestEnvironment:
    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
        monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "60")
        monkeypatch.setenv("REVOKE_FAMILY_ON_REPLAY", "true")
        monkeypatch.setenv("ALLOWED_HOSTS", '["auth.example.com"]')
        s = _settings()
        assert s.secret_key == GOOD_KEY
        assert s.access_token_ttl_seconds == 60
        assert s.revoke_family_on_replay is True
        assert s.allowed_hosts == ["auth.example.com"]

    @pytest.mark.parametrize("field", ["access_token_ttl_seconds", "refresh_token_ttl_seconds"])
    def test_non_positive_ttl_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError):
            _settings(secret_key=GOOD_KEY, **{field: 0})

    def test_negative_sweep_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(secret_key=GOOD_KEY, sweep_interval_seconds=-1)

    def test_zero_sweep_interval_allowed(self) -> None:
        assert _settings(secret_key=GOOD_KEY, sweep_interval_seconds=0).sweep_interval_seconds == 0
