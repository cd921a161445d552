from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PTAX_BASE_URL = "https://olinda.bcb.gov.br/olinda/servico/PTAX/versao/v1/odata"


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


class FxSettings(BaseSettings):
    """PTAX feed settings, overridable through PDM_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="PDM_", case_sensitive=False, frozen=True, env_ignore_empty=True)

    ptax_base_url: str = Field(default=DEFAULT_PTAX_BASE_URL)
    timeout_seconds: float = Field(default=10.0, gt=0, validation_alias=AliasChoices("timeout_seconds", "PDM_FX_TIMEOUT"))
    lookback_days: int = Field(default=10, ge=1, le=31)

    @field_validator("ptax_base_url")
    @classmethod
    def _normalize_base_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("PTAX base URL must start with http:// or https://")
        return v


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "PortDisbursementManager") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "disbursements.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def get_fx_settings() -> FxSettings:
    return FxSettings()
