#!src/devotional_app/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from devotional_app.utils.logger import get_logger
from devotional_app.utils.project_paths import ProjectPaths

logger = get_logger(__name__)


class SettingsError(RuntimeError):
    """Failure while loading or validating settings."""


class PathsConfig(BaseModel):
    """Filesystem paths."""

    db: str = "data/devotional.db"
    export: str = "data/export/all-spreads.json"
    catalog: str = "configs/catalog.yaml"

    model_config = {"extra": "allow"}


class PipelineConfig(BaseModel):
    """Pipeline tracker tuning.

    Attributes:
        pending_batch_size: Bound on the pending work view.
        lease_seconds: How long a worker claim stays valid.
        max_retries: Advisory retry ceiling for external workers.
    """

    pending_batch_size: int = Field(default=5, ge=1, le=1000)
    lease_seconds: int = Field(default=600, ge=1)
    max_retries: int = Field(default=3, ge=0)

    model_config = {"extra": "forbid"}


class DbConfig(BaseModel):
    """SQLite connection tuning."""

    timeout_seconds: int = Field(default=30, ge=1)

    model_config = {"extra": "forbid"}


class AppConfig(BaseModel):
    """Top level application config."""

    paths: PathsConfig = PathsConfig()
    pipeline: PipelineConfig = PipelineConfig()
    db: DbConfig = DbConfig()
    app_env: str = "production"

    model_config = {"extra": "allow"}


@dataclass(frozen=True, slots=True)
class Settings:
    """Unified settings.

    Attributes:
        app: Validated application config, with paths already resolved.
        paths: Project paths.
    """

    app: AppConfig
    paths: ProjectPaths

    @property
    def db_path(self) -> Path:
        """Database file path."""
        return Path(self.app.paths.db).expanduser().resolve()

    @property
    def export_path(self) -> Path:
        """Default static export path."""
        return Path(self.app.paths.export).expanduser().resolve()

    @property
    def catalog_path(self) -> Path:
        return Path(self.app.paths.catalog).expanduser().resolve()

    @property
    def pipeline(self) -> PipelineConfig:
        return self.app.pipeline


def load_app_config(paths: Optional[ProjectPaths] = None) -> AppConfig:
    """Load, merge and validate the application config.

    Reads ``configs/default.yaml``, overlays ``configs/config.{APP_ENV}.yaml``
    when present, then applies environment overrides.

    Args:
        paths: Resolved project paths.

    Returns:
        AppConfig: Validated config with absolute paths.

    Raises:
        SettingsError: If a file is unreadable or validation fails.
    """
    load_dotenv(override=False)

    resolved_paths = paths or ProjectPaths.discover()
    env_name = str(os.getenv("APP_ENV", "production") or "production").strip()

    default_path = resolved_paths.config_file()
    profile_path = resolved_paths.config_file(env_name)

    base = _read_yaml_mapping(default_path, required=False)
    overlay = _read_yaml_mapping(profile_path, required=False)

    merged = _deep_merge(base, overlay)
    merged["app_env"] = env_name
    _override_from_env(merged)

    try:
        model = AppConfig.model_validate(merged)
    except ValidationError as e:
        raise SettingsError(f"Config validation failed: {e}") from e

    model.paths = PathsConfig.model_validate(
        _normalize_path_map(model.paths.model_dump(), resolved_paths)
    )

    logger.debug(
        f"Loaded app config, env={env_name}, default_exists={default_path.exists()}, profile_exists={profile_path.exists()}"
    )
    return model


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings.

    Returns:
        Settings: Loaded settings.
    """
    paths = ProjectPaths.discover()
    return Settings(app=load_app_config(paths), paths=paths)


def reload_settings() -> Settings:
    """Reload settings, dropping the cache.

    Returns:
        Settings: Reloaded settings.
    """
    get_settings.cache_clear()
    return get_settings()


def _read_yaml_mapping(path: Path, required: bool) -> Dict[str, Any]:
    if not path.exists():
        if required:
            raise SettingsError(f"Missing config file: {path}")
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf8"))
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"Invalid YAML at {path}: {e}") from e

    if raw is None:
        return {}

    if not isinstance(raw, dict):
        raise SettingsError(f"Top level YAML must be a mapping at {path}")

    return raw


def _deep_merge(a: Mapping[str, Any], b: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {k: v for k, v in a.items()}
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _normalize_path_map(raw: object, paths: ProjectPaths) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(paths.resolve(str(v))) for k, v in raw.items()}


def _override_from_env(merged: Dict[str, Any]) -> None:
    paths = merged.get("paths") if isinstance(merged.get("paths"), dict) else {}
    pipeline = merged.get("pipeline") if isinstance(merged.get("pipeline"), dict) else {}

    db_path = str(os.getenv("DEVOTIONAL_DB_PATH", "") or "").strip()
    batch = str(os.getenv("DEVOTIONAL_PENDING_BATCH_SIZE", "") or "").strip()

    if db_path:
        paths["db"] = db_path
    if batch:
        pipeline["pending_batch_size"] = batch

    merged["paths"] = paths
    merged["pipeline"] = pipeline
