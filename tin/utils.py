"""Utility helpers for filesystem access and path handling."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Iterable, List

from pathspec.gitignore import GitIgnoreSpec


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def relative_posix(path: Path, root: Path) -> str:
    rel = path.relative_to(root)
    if rel == Path("."):
        return ""
    return rel.as_posix()


class RootGlobs:
    """Root-relative glob patterns; a path matches when any pattern does."""

    def __init__(self, specs: list[GitIgnoreSpec]) -> None:
        self._specs = specs

    def match_file(self, rel_path: str) -> bool:
        return any(spec.match_file(rel_path) for spec in self._specs)


def _anchor(pattern: str) -> str:
    if pattern.startswith(("/", "**/")):
        return pattern
    return f"/{pattern}"


def build_glob_spec(patterns: Iterable[str]) -> RootGlobs:
    """Compile root-relative glob *patterns*, skipping blanks and duplicates.

    Each pattern is anchored at the root, so ``*.md`` only matches top-level
    files and ``**/*.md`` matches at any depth. A pattern matches files
    directly: ``docs`` names a file, while ``docs/**`` or ``docs/`` covers a
    directory's contents.
    """
    specs: list[GitIgnoreSpec] = []
    seen: set[str] = set()
    for raw in patterns:
        token = raw.strip()
        if not token or token in seen:
            continue
        seen.add(token)
        anchored = _anchor(token)
        lines = [anchored]
        if not anchored.endswith(("/", "**")):
            # gitwildmatch lets a pattern match through a parent directory
            lines.append(f"!{anchored}/**")
        specs.append(GitIgnoreSpec.from_lines(lines))
    return RootGlobs(specs)


def collect_files(
    root: Path | str,
    include: Iterable[str],
    exclude: Iterable[str] = (),
) -> List[str]:
    """Return sorted root-relative POSIX paths of files matching *include*.

    Only regular files are returned. Symbolic links are never followed and
    hidden files or directories are skipped. Matching is case-sensitive.
    """

    directory = resolve_directory(root)
    include_spec = build_glob_spec(include)
    exclude_spec = build_glob_spec(exclude)

    found: set[str] = set()
    for dirpath, dirnames, filenames in os.walk(directory, topdown=True, followlinks=False):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        current_dir = Path(dirpath)
        for filename in filenames:
            if filename.startswith("."):
                continue
            candidate = current_dir / filename
            if candidate.is_symlink() or not candidate.is_file():
                continue
            rel_path = relative_posix(candidate, directory)
            if not include_spec.match_file(rel_path):
                continue
            if exclude_spec.match_file(rel_path):
                continue
            found.add(rel_path)
    return sorted(found)


def hash_content(content: str) -> str:
    """Return the hex SHA-256 digest of *content* encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def ensure_positive(value: int, name: str) -> int:
    """Validate that *value* is positive."""
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value
