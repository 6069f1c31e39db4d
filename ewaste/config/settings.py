from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="EWASTE_",
        extra="ignore",
    )

    environment: str = "local"
    data_dir: Path = Path("data")
    sqlite_path: Path = Path("data/ewaste.sqlite3")
    blob_dir: Path = Path("data/blobs")

    providers_config_path: Path = Path("ewaste/config/providers.yaml")

    log_level: str = "INFO"
    log_file: Path | None = None

    default_location: str = "USA"

    llm_provider: Literal["google", "openai"] = "google"
    default_model: str = Field(
        default="gemini-2.0-flash",
        validation_alias=AliasChoices("EWASTE_DEFAULT_MODEL", "GEMINI_MODEL"),
    )
    generation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    generation_max_attempts: int = Field(default=3, ge=1)
    generation_base_delay_seconds: float = Field(default=1.0, ge=0.0)

    detector_type: Literal["stub", "http"] = "stub"
    detector_endpoint: str = "http://localhost:8000/detect"
    detector_timeout_seconds: float = Field(default=30.0, gt=0)

    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "EWASTE_GOOGLE_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"
        ),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("EWASTE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parents[2]

    @property
    def resolved_data_dir(self) -> Path:
        return self._resolve_path(self.data_dir)

    @property
    def resolved_sqlite_path(self) -> Path:
        return self._resolve_path(self.sqlite_path)

    @property
    def resolved_blob_dir(self) -> Path:
        return self._resolve_path(self.blob_dir)

    @property
    def resolved_providers_config_path(self) -> Path:
        return self._resolve_path(self.providers_config_path)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}

        if not isinstance(data, dict):
            raise ValueError(f"YAML config must contain object root: {path}")

        return data

    @property
    def providers_config(self) -> dict[str, Any]:
        return self.load_yaml(self.resolved_providers_config_path)

    def resolve_model(self, provider: str | None = None) -> str:
        """Model for ``provider``: env override first, then the provider catalogue."""
        active_provider = provider or self.llm_provider
        if "default_model" in self.model_fields_set:
            return self.default_model

        providers = self.providers_config.get("llm_providers", {})
        entry = providers.get(active_provider, {})
        if isinstance(entry, dict) and entry.get("default_model"):
            return str(entry["default_model"])
        return self.default_model

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
