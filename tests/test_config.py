from datetime import timedelta

import pytest

from coursecert.core.config import Settings


def test_interview_policy_is_built_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTERVIEW_MIN_PASS_SCORE", "80")
    monkeypatch.setenv("INTERVIEW_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("INTERVIEW_COOLDOWN_SECONDS", "3600")

    config = Settings().interview_policy()

    assert config.min_pass_score == 80
    assert config.max_attempts == 5
    assert config.cooldown == timedelta(hours=1)


def test_defaults_apply_when_env_is_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("INTERVIEW_MIN_PASS_SCORE", "INTERVIEW_MAX_ATTEMPTS", "INTERVIEW_COOLDOWN_SECONDS"):
        monkeypatch.delenv(name, raising=False)

    config = Settings().interview_policy()

    assert (config.min_pass_score, config.max_attempts, config.cooldown) == (70, 3, timedelta(days=7))


def test_invalid_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTERVIEW_MAX_ATTEMPTS", "three")
    monkeypatch.setenv("QUESTIONS_MIN", "")
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "soon")
    settings = Settings()

    assert settings.interview_max_attempts == 3
    assert settings.questions_min == 8
    assert settings.llm_timeout_seconds == 30.0


def test_llm_retries_never_drop_below_one(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_MAX_RETRIES", "0")
    assert Settings().llm_max_retries == 1


def test_production_requires_a_long_jwt_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("JWT_SECRET", "short")
    with pytest.raises(ValueError):
        Settings().jwt_secret

    monkeypatch.setenv("JWT_SECRET", "x" * 32)
    assert Settings().jwt_secret == "x" * 32
