"""Tests for the command line interface."""

import pytest
import yaml
from click.testing import CliRunner

from devkb.cli import cli
from devkb.models import Document, DocumentMetadata, ScoringMode, SearchResult
from devkb.query import search as search_module


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for var in ("EMBEDDING_PROVIDER", "EMBEDDING_DIMENSIONS", "DEVKB_COLLECTION"):
        monkeypatch.delenv(var, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "chroma_path": str(tmp_path / "chroma"),
        "embeddings": {"provider": "hash", "dimensions": 64, "max_retries": 0},
        "log_level": "WARNING",
    }))
    return path


def test_add_search_and_stats(tmp_path, config_file):
    note = tmp_path / "retry.md"
    note.write_text("retry backoff policy")
    runner = CliRunner()

    result = runner.invoke(cli, ["-c", str(config_file), "add", str(note), "--tag", "python"])
    assert result.exit_code == 0, result.output
    assert "Added retry.md" in result.output

    result = runner.invoke(cli, ["-c", str(config_file), "search", "retry backoff policy"])
    assert result.exit_code == 0, result.output
    assert "retry.md" in result.output

    result = runner.invoke(cli, ["-c", str(config_file), "stats"])
    assert result.exit_code == 0, result.output
    assert "Total documents: 1" in result.output


def test_add_empty_file_fails(tmp_path, config_file):
    note = tmp_path / "empty.md"
    note.write_text("  ")
    result = CliRunner().invoke(cli, ["-c", str(config_file), "add", str(note)])
    assert result.exit_code == 1
    assert "EMPTY_TEXT" in result.output


def test_update_missing_document(config_file):
    result = CliRunner().invoke(cli, ["-c", str(config_file), "update", "nope", "--title", "x"])
    assert result.exit_code == 1
    assert "DOCUMENT_NOT_FOUND" in result.output


def test_init_writes_config(tmp_path):
    result = CliRunner().invoke(cli, ["init", "--path", str(tmp_path / "kb")])
    assert result.exit_code == 0, result.output
    written = yaml.safe_load((tmp_path / "kb" / "config.yaml").read_text())
    assert written["chunking"]["chunk_size"] == 1000


def test_search_labels_lexical_scores(config_file, monkeypatch):
    def fake_search(query, config, **kwargs):
        doc = Document(id="d1", title="Retry notes", content="backoff", metadata=DocumentMetadata(source="n.md"))
        return [SearchResult(document=doc, score=0.9, scoring=ScoringMode.LEXICAL)]

    monkeypatch.setattr(search_module, "semantic_search", fake_search)
    result = CliRunner().invoke(cli, ["-c", str(config_file), "search", "retry"])
    assert result.exit_code == 0, result.output
    assert "0.900 (lexical)" in result.output
    assert "Lexical scores are substring matches" in result.output
