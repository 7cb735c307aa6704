from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from bitmexplus.config import Settings


def test_defaults_target_production_without_credentials() -> None:
    settings = Settings()

    assert settings.resolved_base_url() == "https://www.bitmex.com"
    assert not settings.has_credentials()
    assert settings.rate_limit_poll_interval_ms == 250
    assert settings.rate_limit_max_polls == 400
    assert settings.default_request_floor == 10


def test_base_url_override_wins_over_testnet_flag() -> None:
    settings = Settings(BITMEX_TESTNET=True, BITMEX_BASE_URL="http://localhost:8080/")

    assert settings.resolved_base_url() == "http://localhost:8080"


def test_blank_secret_does_not_count_as_credentials() -> None:
    settings = Settings(BITMEX_API_KEY="key-id", BITMEX_API_SECRET="")

    assert not settings.has_credentials()


def test_secrets_are_not_rendered_in_repr() -> None:
    settings = Settings(BITMEX_API_KEY="key-id", BITMEX_API_SECRET="very-secret")

    assert settings.has_credentials()
    assert "very-secret" not in repr(settings)


@pytest.mark.parametrize(
    "overrides",
    [
        {"RATE_LIMIT_MAX_POLLS": 0},
        {"RATE_LIMIT_POLL_INTERVAL_MS": -1},
        {"RATE_LIMIT_REFILL_INTERVAL_SECONDS": 0},
        {"SIGNATURE_TTL_SECONDS": 0},
        {"REQUEST_TIMEOUT_SECONDS": 0},
    ],
)
def test_invalid_values_are_rejected(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_loads_values_from_env_file(monkeypatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(["BITMEX_TESTNET=true", "RATE_LIMIT_MAX_POLLS=12"]) + "\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    settings = Settings(_env_file=env_file)

    assert settings.bitmex_testnet is True
    assert settings.rate_limit_max_polls == 12
