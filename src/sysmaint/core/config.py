"""sysmaint runtime configuration definitions."""

from pathlib import Path
from typing import ClassVar

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from env and .env files."""

    app_name: str = "sysmaint"
    environment: str = Field(default="dev", pattern="^(dev|test|prod)$")
    probe_timeout_s: float = Field(default=10.0, gt=0.0)
    cache_ttl_s: float = Field(default=300.0, ge=0.0)
    max_probe_workers: int = Field(default=8, ge=1)
    restore_mode: str = Field(default="factory", pattern="^(factory|session)$")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    _bundled_catalog: ClassVar[Path] = Path(__file__).resolve().parents[1] / "actions" / "catalog.json"
    catalog_path: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="SYSMAINT_")

    @model_validator(mode="after")
    def _normalize_paths(self) -> "Settings":
        if not self.catalog_path.strip():
            self.catalog_path = str(self._bundled_catalog)
            return self
        path = Path(self.catalog_path).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        self.catalog_path = str(path)
        return self
