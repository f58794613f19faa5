from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MEMORY_FALLBACK = ":memory:"


class Settings(BaseSettings):
    data_dir: Path = Field(Path("~/.planstore"), alias="PLANSTORE_DATA_DIR")
    database_url_raw: str | None = Field(None, alias="PLANSTORE_DATABASE_URL")
    fallback_path_raw: str | None = Field(None, alias="PLANSTORE_FALLBACK_PATH")
    relational_enabled: bool = Field(True, alias="PLANSTORE_RELATIONAL_ENABLED")
    seed_path_raw: str | None = Field(None, alias="PLANSTORE_SEED_PATH")
    log_level: str = Field("INFO", alias="PLANSTORE_LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir.expanduser()

    @property
    def database_url(self) -> str:
        if self.database_url_raw and self.database_url_raw.strip():
            return self.database_url_raw.strip()
        return f"sqlite+aiosqlite:///{self.resolved_data_dir / 'planstore.db'}"

    @property
    def fallback_path(self) -> Path | None:
        raw = (self.fallback_path_raw or "").strip()
        if raw == MEMORY_FALLBACK:
            return None
        if raw:
            return Path(raw).expanduser()
        return self.resolved_data_dir / "fallback.json"

    @property
    def seed_path(self) -> Path:
        raw = (self.seed_path_raw or "").strip()
        if raw:
            return Path(raw).expanduser()
        return Path(__file__).parent / "data" / "initial_categories.json"


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
