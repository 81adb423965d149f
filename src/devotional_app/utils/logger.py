#!filepath: src/devotional_app/utils/logger.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler

from devotional_app.utils.project_paths import ProjectPaths

PACKAGE_LOGGER = "devotional_app"


class LoggingSettings(BaseSettings):
    """Logging configuration read from ``DEVOTIONAL_*`` variables and .env.

    Attributes:
        log_dir: Log directory, relative paths resolve against the project root.
        console_level: Console handler level.
        file_level: File handler level.
        file_name: Log file name.
        max_bytes: Maximum file size before rotation.
        backup_count: How many rotated files to keep.
        console_quiet: Comma separated loggers whose INFO records stay out of
            the console. The CLI prints its own line for each tracker write.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_prefix="DEVOTIONAL_",
    )

    log_dir: Path = Field(default=Path("data/logs"), validation_alias="DEVOTIONAL_LOG_DIR")
    console_level: str = Field(default="INFO", validation_alias="DEVOTIONAL_CONSOLE_LEVEL")
    file_level: str = Field(default="DEBUG", validation_alias="DEVOTIONAL_FILE_LEVEL")
    file_name: str = Field(default="devotional.log", validation_alias="DEVOTIONAL_LOG_FILE")
    max_bytes: int = Field(default=5_000_000, validation_alias="DEVOTIONAL_LOG_MAX_BYTES")
    backup_count: int = Field(default=5, validation_alias="DEVOTIONAL_LOG_BACKUP_COUNT")
    console_quiet: str = Field(
        default="devotional_app.pipeline.tracker",
        validation_alias="DEVOTIONAL_CONSOLE_QUIET",
    )

    @property
    def quiet_loggers(self) -> tuple[str, ...]:
        return tuple(n.strip() for n in self.console_quiet.split(",") if n.strip())


class QuietConsoleFilter(logging.Filter):
    """Drops records below WARNING from the named loggers and their children."""

    def __init__(self, names: tuple[str, ...]) -> None:
        super().__init__()
        self._names = names

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return not any(
            record.name == n or record.name.startswith(n + ".") for n in self._names
        )


@dataclass(slots=True)
class _Runtime:
    configured: bool = False


_runtime: _Runtime = _Runtime()


def _level(name: str, default: int) -> int:
    return getattr(logging, name.upper(), default)


def configure_logging(*, settings: Optional[LoggingSettings] = None) -> None:
    """Attach the console and rotating file handlers to the package logger, once.

    Only ``devotional_app`` loggers are routed here. Other libraries keep
    whatever the host application set up.

    Args:
        settings: Optional override, used by tests.
    """
    if _runtime.configured:
        return

    s = settings or LoggingSettings()
    log_dir = ProjectPaths.discover().resolve(s.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    pkg = logging.getLogger(PACKAGE_LOGGER)
    pkg.setLevel(logging.DEBUG)
    pkg.propagate = False
    for h in list(pkg.handlers):
        pkg.removeHandler(h)
        h.close()

    console = RichHandler(markup=False, show_path=False, log_time_format="[%X]")
    console.setLevel(_level(s.console_level, logging.INFO))
    console.setFormatter(logging.Formatter("%(message)s"))
    console.addFilter(QuietConsoleFilter(s.quiet_loggers))

    file_handler = RotatingFileHandler(
        filename=str(log_dir / s.file_name),
        maxBytes=int(s.max_bytes),
        backupCount=int(s.backup_count),
        encoding="utf_8",
    )
    file_handler.setLevel(_level(s.file_level, logging.DEBUG))
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    )

    pkg.addHandler(console)
    pkg.addHandler(file_handler)

    _runtime.configured = True


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """Return a package logger, configuring handlers on first use."""
    configure_logging()
    return logging.getLogger(name)
