"""Project discovery and bootstrap."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import write_default_config
from .errors import ConfigError
from .text import Messages

TIN_DIRNAME = ".tin"
CONFIG_FILENAME = "config.json"
INDEX_FILENAME = "index.sqlite"


@dataclass(frozen=True, slots=True)
class ProjectPaths:
    root: Path

    @property
    def tin_dir(self) -> Path:
        return self.root / TIN_DIRNAME

    @property
    def config_path(self) -> Path:
        return self.tin_dir / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        return self.tin_dir / INDEX_FILENAME


@dataclass(frozen=True, slots=True)
class InitResult:
    paths: ProjectPaths
    created_dir: bool
    created_config: bool


def find_project_root(start: Path | str | None = None) -> Path | None:
    """Walk up from *start* until a directory holding ``.tin/`` is found."""
    current = Path(start or Path.cwd()).expanduser().resolve()
    for candidate in (current,) + tuple(current.parents):
        if (candidate / TIN_DIRNAME).is_dir():
            return candidate
    return None


def require_project(start: Path | str | None = None) -> ProjectPaths:
    root = find_project_root(start)
    if root is None:
        raise ConfigError(Messages.ERROR_NO_PROJECT)
    return ProjectPaths(root=root)


def init_project(root: Path | str | None = None) -> InitResult:
    """Create ``.tin/`` and the default config under *root* when missing."""
    paths = ProjectPaths(root=Path(root or Path.cwd()).expanduser().resolve())
    created_dir = not paths.tin_dir.is_dir()
    paths.tin_dir.mkdir(parents=True, exist_ok=True)
    created_config = write_default_config(paths.config_path)
    return InitResult(paths=paths, created_dir=created_dir, created_config=created_config)
