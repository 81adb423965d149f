#!filepath: src/devotional_app/utils/project_paths.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ROOT_ENV = "DEVOTIONAL_ROOT"
_MARKERS = ("pyproject.toml", "setup.cfg")


@dataclass(frozen=True, slots=True)
class ProjectPaths:
    """Where config files live and what relative config paths mean.

    Relative paths in configuration resolve against ``root``, never against
    the working directory, so the CLI behaves the same from any folder.

    Args:
        root: Project root directory.
    """

    root: Path

    @property
    def configs_dir(self) -> Path:
        return (self.root / "configs").resolve()

    def config_file(self, env_name: Optional[str] = None) -> Path:
        """``default.yaml``, or the ``config.{env}.yaml`` overlay when env is given."""
        name = f"config.{env_name}.yaml" if env_name else "default.yaml"
        return self.configs_dir / name

    def resolve(self, value: str | Path) -> Path:
        p = Path(value).expanduser()
        return p.resolve() if p.is_absolute() else (self.root / p).resolve()

    @classmethod
    def discover(cls, start: Optional[Path] = None) -> ProjectPaths:
        """Find the root: ``DEVOTIONAL_ROOT``, else the nearest marker above ``start``.

        Falls back to the working directory when the package is installed
        outside a checkout.
        """
        pinned = str(os.getenv(ROOT_ENV, "") or "").strip()
        if pinned:
            return cls(root=Path(pinned).expanduser().resolve())

        here = (start or Path(__file__)).resolve()
        for parent in (here, *here.parents):
            if any((parent / m).exists() for m in _MARKERS) and (parent / "configs").is_dir():
                return cls(root=parent)
        return cls(root=Path.cwd().resolve())
