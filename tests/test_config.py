from types import SimpleNamespace

import pytest

from ridehail.config import production_problems
from ridehail.env import env_bool, env_float, env_int, env_list


def test_env_readers(monkeypatch):
    monkeypatch.setenv("RH_FLAG", " Yes ")
    monkeypatch.setenv("RH_COUNT", "7")
    monkeypatch.setenv("RH_RATE", "0.25")
    monkeypatch.setenv("RH_ORIGINS", "https://a.example, ,https://b.example")
    assert env_bool("RH_FLAG") is True
    assert env_int("RH_COUNT", 1) == 7
    assert env_float("RH_RATE", 1.0) == 0.25
    assert env_list("RH_ORIGINS") == ["https://a.example", "https://b.example"]


def test_env_defaults(monkeypatch):
    monkeypatch.delenv("RH_MISSING", raising=False)
    monkeypatch.setenv("RH_BLANK", "  ")
    assert env_bool("RH_MISSING", default=True) is True
    assert env_int("RH_BLANK", 3) == 3
    assert env_list("RH_MISSING", default=["*"]) == ["*"]
    assert env_list("RH_BLANK", default=["*"]) == []


def test_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("RH_FLAG", "maybe")
    monkeypatch.setenv("RH_COUNT", "seven")
    with pytest.raises(ValueError, match="RH_FLAG"):
        env_bool("RH_FLAG")
    with pytest.raises(ValueError, match="RH_COUNT"):
        env_int("RH_COUNT", 1)


def _prod(**overrides):
    values = dict(
        ALLOWED_ORIGINS=["https://app.example"],
        AUTO_CREATE_SCHEMA=False,
        OTP_MODE="redis",
        OTP_STORAGE_SECRET="s" * 32,
        JWT_SECRET="j" * 32,
        PAYMENTS_BASE_URL="https://payments.internal",
        PAYMENTS_INTERNAL_SECRET="p" * 32,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_production_settings_pass():
    assert production_problems(_prod()) == []


def test_production_settings_flag_dev_defaults():
    problems = production_problems(_prod(
        ALLOWED_ORIGINS=["*"],
        OTP_MODE="dev",
        JWT_SECRET="change_me_in_prod",
        PAYMENTS_INTERNAL_SECRET="dev_secret",
    ))
    assert len(problems) == 4
    assert any("JWT_SECRET" in p for p in problems)
