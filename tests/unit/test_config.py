"""
Unit tests for configuration loading and validation.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from vecsync.config import (
    ChunkingConfig,
    Config,
    EmbeddingProviderName,
    WatcherConfig,
    load_config,
)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self, temp_dir: Path):
        """Test a bare config is usable."""
        config = Config(project_root=temp_dir)

        assert config.watcher.debounce_ms == 500
        assert config.watcher.ignore_file_name == ".vecsyncignore"
        assert config.embedding.provider == EmbeddingProviderName.OLLAMA
        assert config.embedding.fallback_provider == EmbeddingProviderName.OPENAI
        assert config.chunking.chunk_overlap < config.chunking.chunk_size

    def test_project_name_falls_back_to_directory(self, temp_dir: Path):
        """Test the root directory name is used when no name is set."""
        project = temp_dir / "billing-api"
        project.mkdir()

        config = Config(project_root=project)

        assert config.effective_project_name == "billing-api"
        assert config.collection_name == "project_billing-api"

    def test_explicit_project_name(self, temp_dir: Path):
        """Test an explicit name wins."""
        config = Config(project_root=temp_dir, project_name="demo")

        assert config.collection_name == "project_demo"

    def test_project_root_resolved(self, temp_dir: Path):
        """Test relative roots are made absolute."""
        config = Config(project_root=str(temp_dir / "." / "sub" / ".."))

        assert config.project_root == temp_dir


class TestValidation:
    """Tests for field constraints."""

    def test_overlap_must_be_smaller(self):
        """Test overlap >= chunk size is rejected."""
        with pytest.raises(ValidationError):
            ChunkingConfig(chunk_size=500, chunk_overlap=500)

    def test_document_overlap_must_be_smaller(self):
        """Test the same rule applies to document chunking."""
        with pytest.raises(ValidationError):
            ChunkingConfig(document_chunk_size=1000, document_chunk_overlap=1200)

    def test_debounce_lower_bound(self):
        """Test debounce below 10ms is rejected."""
        with pytest.raises(ValidationError):
            WatcherConfig(debounce_ms=5)

    def test_max_file_size_positive(self):
        """Test a zero size limit is rejected."""
        with pytest.raises(ValidationError):
            WatcherConfig(max_file_size_mb=0)


class TestEnvironment:
    """Tests for VECSYNC_ environment variables."""

    def test_top_level_env(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch):
        """Test top-level settings are read from the environment."""
        monkeypatch.setenv("VECSYNC_PROJECT_NAME", "from-env")
        monkeypatch.setenv("VECSYNC_LOG_LEVEL", "WARNING")

        config = Config(project_root=temp_dir)

        assert config.project_name == "from-env"
        assert config.log_level == "WARNING"

    def test_nested_env(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch):
        """Test nested settings use the double-underscore delimiter."""
        monkeypatch.setenv("VECSYNC_WATCHER__DEBOUNCE_MS", "250")
        monkeypatch.setenv("VECSYNC_EMBEDDING__OPENAI_API_KEY", "sk-env")

        config = Config(project_root=temp_dir)

        assert config.watcher.debounce_ms == 250
        assert config.embedding.openai_api_key == "sk-env"


class TestFiles:
    """Tests for file-based configuration."""

    def test_from_toml(self, temp_dir: Path):
        """Test loading a TOML file."""
        path = temp_dir / "vecsync.toml"
        path.write_text(
            'project_name = "toml-project"\n'
            "\n"
            "[watcher]\n"
            "debounce_ms = 120\n"
            "\n"
            "[vector_store]\n"
            'url = "http://qdrant:6333"\n'
        )

        config = Config.from_file(path)

        assert config.project_name == "toml-project"
        assert config.watcher.debounce_ms == 120
        assert config.vector_store.url == "http://qdrant:6333"

    def test_from_yaml(self, temp_dir: Path):
        """Test loading a YAML file."""
        path = temp_dir / "vecsync.yaml"
        path.write_text("chunking:\n  chunk_size: 800\n  chunk_overlap: 100\n")

        config = Config.from_file(path)

        assert config.chunking.chunk_size == 800

    def test_from_json(self, temp_dir: Path):
        """Test loading a JSON file."""
        path = temp_dir / "vecsync.json"
        path.write_text(json.dumps({"indexing": {"workers": 7}}))

        assert Config.from_file(path).indexing.workers == 7

    def test_unsupported_format(self, temp_dir: Path):
        """Test unknown extensions are rejected."""
        path = temp_dir / "vecsync.ini"
        path.write_text("[x]\n")

        with pytest.raises(ValueError):
            Config.from_file(path)

    def test_missing_file(self, temp_dir: Path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            Config.from_file(temp_dir / "nope.toml")


class TestLoadConfig:
    """Tests for config discovery."""

    def test_discovers_project_file(self, temp_dir: Path):
        """Test vecsync.toml in the project root is found."""
        (temp_dir / "vecsync.toml").write_text("[watcher]\ndebounce_ms = 300\n")

        config = load_config(project_root=temp_dir)

        assert config.watcher.debounce_ms == 300
        assert config.project_root == temp_dir

    def test_discovers_dot_directory(self, temp_dir: Path):
        """Test .vecsync/config.toml is found."""
        (temp_dir / ".vecsync").mkdir()
        (temp_dir / ".vecsync" / "config.toml").write_text("[indexing]\nworkers = 2\n")

        assert load_config(project_root=temp_dir).indexing.workers == 2

    def test_explicit_path(self, temp_dir: Path):
        """Test an explicit path wins and the root is kept."""
        explicit = temp_dir / "custom.yaml"
        explicit.write_text("project_name: custom\n")
        (temp_dir / "vecsync.toml").write_text('project_name = "discovered"\n')

        config = load_config(config_path=explicit, project_root=temp_dir)

        assert config.project_name == "custom"
        assert config.project_root == temp_dir

    def test_defaults_when_nothing_found(self, temp_dir: Path):
        """Test defaults are used without any file."""
        config = load_config(project_root=temp_dir)

        assert config.project_root == temp_dir
        assert config.watcher.debounce_ms == 500
