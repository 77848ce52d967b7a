import os
import string

import numpy as np
import pytest

from tin.config import Config, EmbeddingSettings
from tin.errors import ConfigError, ProviderError
from tin.project import init_project
from tin.search import TinEmbedder
from tin.services import index_service
from tin.services.index_service import CHUNKING_HASH_VERSION, index_project
from tin.store import list_indexed_files, load_store_counts, open_store, search_keyword

ALPHABET_INDEX = {ch: idx for idx, ch in enumerate(string.ascii_lowercase)}


class LetterBackend:
    def __init__(self):
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            vec = np.zeros(len(ALPHABET_INDEX), dtype=np.float32)
            for char in text.lower():
                idx = ALPHABET_INDEX.get(char)
                if idx is not None:
                    vec[idx] += 1.0
            vectors.append(vec)
        return np.stack(vectors)


class FailingBackend:
    def embed(self, texts):
        raise ProviderError("Embedding API request failed: HTTP 500")


def _settings(api_key="test-key", model="letters") -> EmbeddingSettings:
    return EmbeddingSettings(
        provider="openai",
        provider_source="default",
        api_key=api_key,
        api_key_source="config: embedding.api_key" if api_key else "unset",
        base_url=None,
        base_url_source="default",
        model=model,
        model_source="default",
        batch_size=2,
    )


@pytest.fixture
def project(tmp_path):
    return init_project(tmp_path).paths


def _write(project, rel_path, text):
    path = project.root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_first_run_adds_then_second_run_skips(project) -> None:
    _write(project, "docs/a.md", "The alpha project is active.")
    _write(project, "docs/b.txt", "Beta release notes and deployment plan.")

    first = index_project(project, Config(), embed=False)
    second = index_project(project, Config(), embed=False)

    assert (first.scanned, first.added, first.updated, first.skipped) == (2, 2, 0, 0)
    assert (second.scanned, second.skipped, second.added, second.updated) == (2, 2, 0, 0)
    with open_store(project.db_path) as conn:
        stored = list_indexed_files(conn)
    assert sorted(stored) == ["docs/a.md", "docs/b.txt"]
    assert all(
        record.content_hash.startswith(f"{CHUNKING_HASH_VERSION}:") for record in stored.values()
    )


def test_unchanged_files_are_not_read_again(project, monkeypatch) -> None:
    _write(project, "a.md", "alpha")
    index_project(project, Config(), embed=False)

    def fail_prepare(*args, **kwargs):
        raise AssertionError("unchanged files must not be read")

    monkeypatch.setattr(index_service, "_prepare_file", fail_prepare)
    stats = index_project(project, Config(), embed=False)

    assert stats.skipped == 1


def test_edit_and_delete_are_reflected(project) -> None:
    _write(project, "docs/a.md", "The alpha project is active.")
    b_path = _write(project, "docs/b.txt", "Beta release notes and deployment plan.")
    index_project(project, Config(), embed=False)

    _write(project, "docs/a.md", "The omega project replaced everything that came before.")
    b_path.unlink()
    stats = index_project(project, Config(), embed=False)

    assert stats.updated == 1
    assert stats.removed == 1
    assert stats.scanned == 1
    with open_store(project.db_path) as conn:
        assert search_keyword(conn, "alpha", limit=5) == []
        assert search_keyword(conn, "beta", limit=5) == []
        assert search_keyword(conn, "omega", limit=5)[0].path == "docs/a.md"


def test_touched_file_only_refreshes_metadata(project) -> None:
    path = _write(project, "a.md", "alpha")
    index_project(project, Config(), embed=False)
    with open_store(project.db_path) as conn:
        before = list_indexed_files(conn)["a.md"]

    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
    stats = index_project(project, Config(), embed=False)

    assert stats.skipped == 1
    assert stats.updated == 0
    with open_store(project.db_path) as conn:
        after = list_indexed_files(conn)["a.md"]
    assert after.mtime_ms == before.mtime_ms + 5000
    assert after.content_hash == before.content_hash


def test_force_rechunks_everything(project) -> None:
    _write(project, "a.md", "alpha")
    _write(project, "b.md", "beta")
    index_project(project, Config(), embed=False)

    stats = index_project(project, Config(), embed=False, force=True)

    assert stats.updated == 2
    assert stats.skipped == 0


def test_whitespace_only_files(project) -> None:
    _write(project, "blank.md", "   \n\t\n")
    path = _write(project, "later.md", "temporary words here")

    first = index_project(project, Config(), embed=False)
    assert first.skipped == 1
    assert first.added == 1

    with open_store(project.db_path) as conn:
        before = list_indexed_files(conn)["later.md"]

    path.write_text("\n\n   \n", encoding="utf-8")
    second = index_project(project, Config(), embed=False)
    third = index_project(project, Config(), embed=False)

    assert (second.skipped, second.updated, second.added) == (2, 0, 0)
    assert (third.skipped, third.updated) == (2, 0)
    with open_store(project.db_path) as conn:
        stored = list_indexed_files(conn)
        assert "blank.md" not in stored
        after = stored["later.md"]
        assert after.content_hash == before.content_hash
        assert after.size_bytes == len("\n\n   \n")
        assert search_keyword(conn, "temporary", limit=5)[0].path == "later.md"
        assert load_store_counts(conn).indexed_chunks == 1


def test_undecodable_file_counts_as_error(project) -> None:
    (project.root / "bad.txt").write_bytes(b"\xff\xfe\x00bad")
    _write(project, "good.md", "fine")

    stats = index_project(project, Config(), embed=False)

    assert stats.errors == 1
    assert stats.added == 1


def test_exclude_rules_remove_previously_indexed_files(project) -> None:
    _write(project, "docs/public.md", "public")
    _write(project, "docs/private/secret.md", "secret")
    index_project(project, Config(), embed=False)

    config = Config(exclude=["docs/private/**"])
    stats = index_project(project, config, embed=False)

    assert stats.removed == 1
    assert stats.scanned == 1


def test_empty_include_falls_back_to_defaults(project) -> None:
    _write(project, "a.md", "alpha")
    _write(project, "a.py", "print('alpha')")

    stats = index_project(project, Config(include=[]), embed=False)

    assert stats.scanned == 1


def test_explicit_embed_requires_provider(project) -> None:
    _write(project, "a.md", "alpha")

    with pytest.raises(ConfigError):
        index_project(project, Config(), settings=_settings(api_key=None), embed=True)


def test_default_embed_skips_when_unconfigured(project) -> None:
    _write(project, "a.md", "alpha")

    stats = index_project(project, Config(), settings=_settings(api_key=None))

    assert stats.embedding_model is None
    assert stats.embedded == 0


def test_index_embeds_new_chunks(project) -> None:
    _write(project, "a.md", "alpha")
    _write(project, "b.md", "beta")
    _write(project, "c.md", "gamma")
    settings = _settings()
    backend = LetterBackend()
    embedder = TinEmbedder(settings, backend=backend)

    first = index_project(project, Config(), settings=settings, embedder=embedder)
    second = index_project(project, Config(), settings=settings, embedder=embedder)

    assert first.embedded == 3
    assert first.embedding_model == "letters"
    assert [len(batch) for batch in backend.calls] == [2, 1]
    assert second.embedded == 0


def test_embed_failure_is_fatal_unless_best_effort(project) -> None:
    _write(project, "a.md", "alpha")
    settings = _settings()
    embedder = TinEmbedder(settings, backend=FailingBackend())

    with pytest.raises(ProviderError):
        index_project(project, Config(), settings=settings, embedder=embedder)

    stats = index_project(
        project, Config(), settings=settings, embedder=embedder, embed_best_effort=True
    )
    assert stats.skipped == 1
    assert len(stats.warnings) == 1
    assert "HTTP 500" in stats.warnings[0]


def test_serial_and_threaded_runs_agree(tmp_path) -> None:
    results = []
    for name, concurrency in (("serial", 1), ("threaded", 8)):
        paths = init_project(tmp_path / name).paths
        for idx in range(12):
            _write(paths, f"notes/n{idx:02d}.md", f"note {idx}\n" * (idx + 1) * 40)
        index_project(paths, Config(), embed=False, concurrency=concurrency)
        with open_store(paths.db_path) as conn:
            rows = conn.execute(
                "SELECT path, chunk_index, start_line, end_line FROM indexed_chunk ORDER BY id"
            ).fetchall()
        results.append([tuple(row) for row in rows])

    assert results[0] == results[1]
