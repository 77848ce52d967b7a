import os

import pytest

from tin.config import DEFAULT_EXCLUDE_GLOBS, DEFAULT_INCLUDE_GLOBS
from tin.utils import collect_files, ensure_positive, hash_content, resolve_directory


def _write(path, text="content"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_collect_files_matches_default_globs(tmp_path) -> None:
    _write(tmp_path / "readme.md")
    _write(tmp_path / "docs" / "guide.md")
    _write(tmp_path / "docs" / "notes.txt")
    _write(tmp_path / "src" / "main.py")
    _write(tmp_path / "node_modules" / "pkg" / "README.md")
    _write(tmp_path / "build" / "out.txt")
    _write(tmp_path / ".tin" / "notes.md")

    files = collect_files(tmp_path, DEFAULT_INCLUDE_GLOBS, DEFAULT_EXCLUDE_GLOBS)

    assert files == ["docs/guide.md", "docs/notes.txt", "readme.md"]


def test_collect_files_skips_hidden_entries(tmp_path) -> None:
    _write(tmp_path / ".hidden.md")
    _write(tmp_path / ".private" / "secret.md")
    _write(tmp_path / "visible.md")

    assert collect_files(tmp_path, ["**/*.md"]) == ["visible.md"]


def test_collect_files_is_case_sensitive(tmp_path) -> None:
    _write(tmp_path / "upper.MD")
    _write(tmp_path / "lower.md")

    assert collect_files(tmp_path, ["**/*.md"]) == ["lower.md"]


def test_collect_files_custom_exclude(tmp_path) -> None:
    _write(tmp_path / "docs" / "public.md")
    _write(tmp_path / "docs" / "private" / "secret.md")

    files = collect_files(tmp_path, ["docs/**/*.md", "**/*.md"], ["docs/private/**"])

    assert files == ["docs/public.md"]


def test_collect_files_ignores_symlinks(tmp_path) -> None:
    target_dir = tmp_path / "outside"
    _write(target_dir / "linked.md")
    root = tmp_path / "root"
    _write(root / "real.md")
    try:
        os.symlink(target_dir / "linked.md", root / "file_link.md")
        os.symlink(target_dir, root / "dir_link", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    assert collect_files(root, ["**/*.md"]) == ["real.md"]


def test_resolve_directory_validates(tmp_path) -> None:
    file_path = tmp_path / "file.txt"
    file_path.write_text("x", encoding="utf-8")

    assert resolve_directory(tmp_path) == tmp_path.resolve()
    with pytest.raises(FileNotFoundError):
        resolve_directory(tmp_path / "missing")
    with pytest.raises(NotADirectoryError):
        resolve_directory(file_path)


def test_hash_content_is_sha256_hex() -> None:
    digest = hash_content("abc")

    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_ensure_positive() -> None:
    assert ensure_positive(3, "limit") == 3
    with pytest.raises(ValueError):
        ensure_positive(0, "limit")


def test_collect_files_patterns_are_root_relative(tmp_path) -> None:
    _write(tmp_path / "top.md")
    _write(tmp_path / "docs" / "a.md")
    _write(tmp_path / "docs" / "deep" / "b.md")

    assert collect_files(tmp_path, ["*.md"]) == ["top.md"]
    assert collect_files(tmp_path, ["docs/*.md"]) == ["docs/a.md"]
    assert collect_files(tmp_path, ["**/*.md"], ["*.md"]) == ["docs/a.md", "docs/deep/b.md"]


def test_collect_files_directory_names_need_explicit_contents(tmp_path) -> None:
    _write(tmp_path / "docs" / "a.md")
    _write(tmp_path / "docs" / "deep" / "b.md")

    assert collect_files(tmp_path, ["docs"]) == []
    assert collect_files(tmp_path, ["docs/*"]) == ["docs/a.md"]
    assert collect_files(tmp_path, ["docs/**"]) == ["docs/a.md", "docs/deep/b.md"]
    assert collect_files(tmp_path, ["docs/"]) == ["docs/a.md", "docs/deep/b.md"]
