from __future__ import annotations

from pathlib import Path

import pytest

from ewaste.config.settings import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "EWASTE_DEFAULT_MODEL",
        "GEMINI_MODEL",
        "EWASTE_LLM_PROVIDER",
        "EWASTE_GOOGLE_API_KEY",
        "GEMINI_API_KEY",
        "GOOGLE_API_KEY",
        "EWASTE_OPENAI_API_KEY",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_settings_reads_env_override(monkeypatch, tmp_path: Path) -> None:
    db_path = tmp_path / "custom.sqlite3"
    monkeypatch.setenv("EWASTE_SQLITE_PATH", str(db_path))
    monkeypatch.setenv("EWASTE_DETECTOR_TYPE", "http")
    monkeypatch.setenv("EWASTE_GENERATION_MAX_ATTEMPTS", "5")

    settings = Settings(_env_file=None)

    assert settings.sqlite_path == db_path
    assert settings.resolved_sqlite_path == db_path.resolve()
    assert settings.detector_type == "http"
    assert settings.generation_max_attempts == 5


def test_relative_paths_resolve_against_project_root() -> None:
    settings = Settings(_env_file=None)

    assert settings.resolved_blob_dir == (settings.project_root / "data/blobs").resolve()


def test_api_keys_accept_provider_env_names(monkeypatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
    monkeypatch.setenv("OPENAI_API_KEY", "openai-key")

    settings = Settings(_env_file=None)

    assert settings.google_api_key == "gemini-key"
    assert settings.openai_api_key == "openai-key"


def test_settings_loads_provider_config() -> None:
    settings = Settings(_env_file=None)

    providers = settings.providers_config

    assert "llm_providers" in providers
    assert {"google", "openai"}.issubset(providers["llm_providers"])


def test_resolve_model_uses_provider_catalogue_unless_overridden(monkeypatch) -> None:
    settings = Settings(_env_file=None)
    assert settings.resolve_model() == "gemini-2.0-flash"
    assert settings.resolve_model("openai") == "gpt-4.1-mini"

    monkeypatch.setenv("GEMINI_MODEL", "gemini-1.5-pro")
    overridden = Settings(_env_file=None)
    assert overridden.resolve_model("openai") == "gemini-1.5-pro"


def test_invalid_values_are_rejected(monkeypatch) -> None:
    monkeypatch.setenv("EWASTE_GENERATION_MAX_ATTEMPTS", "0")

    with pytest.raises(ValueError):
        Settings(_env_file=None)
