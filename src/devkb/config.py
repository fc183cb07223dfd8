"""Configuration management for devkb."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import InvalidConfigurationError


DEFAULT_CONFIG = {
    "storage_backend": "chromadb",
    "chroma_path": "~/.devkb/chroma",
    "collection_name": "documents",
    "embeddings": {
        "provider": "sentence-transformers",
        "model": "all-MiniLM-L6-v2",
        "dimensions": 384,
        "api_key": None,
        "base_url": None,
        "timeout": 30.0,
        "max_retries": 3,
        "base_delay": 1.0,
    },
    "chunking": {"chunk_size": 1000, "overlap": 200},
    "search": {"limit": 10, "similarity_threshold": 0.7},
    "self_indexing": {
        "enabled": True,
        "root": ".",
        "auto_index_interval": 3_600_000,  # ms
        "history_days": 7,
        "docs_dir": "docs",
        "src_dir": "src",
        "doc_files": ["README.md", "CHANGELOG.md", "CONTRIBUTING.md"],
        "doc_extensions": [".md", ".txt", ".rst", ".adoc"],
        "code_extensions": [".py", ".pyi", ".ts", ".js", ".tsx", ".jsx", ".json", ".yaml", ".yml", ".toml"],
        "config_files": [
            "pyproject.toml", "setup.cfg", "package.json", "tsconfig.json",
            "docker-compose.yml", "Dockerfile",
        ],
        "exclude_dirs": [
            "node_modules", ".git", "dist", "build", "__pycache__", ".venv", "venv",
            ".tox", ".mypy_cache", ".pytest_cache",
        ],
    },
    "log_level": "INFO",
}

# env var -> (section, key, cast); section None means top level
_ENV_OVERRIDES = {
    "EMBEDDING_PROVIDER": ("embeddings", "provider", str),
    "EMBEDDING_MODEL": ("embeddings", "model", str),
    "EMBEDDING_DIMENSIONS": ("embeddings", "dimensions", int),
    "EMBEDDING_RETRIES": ("embeddings", "max_retries", int),
    "EMBEDDING_BASE_URL": ("embeddings", "base_url", str),
    "OPENAI_API_KEY": ("embeddings", "api_key", str),
    "AUTO_INDEX_INTERVAL": ("self_indexing", "auto_index_interval", int),
    "DEVKB_COLLECTION": (None, "collection_name", str),
    "LOG_LEVEL": (None, "log_level", str.upper),
}


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".devkb" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
        _deep_merge(cfg, file_cfg)

    _apply_env(cfg, os.environ)

    cfg["chroma_path"] = str(Path(cfg["chroma_path"]).expanduser().resolve())

    validate_config(cfg)
    return cfg


def _apply_env(cfg: dict[str, Any], environ) -> None:
    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if not raw:
            continue
        target = cfg if section is None else cfg.setdefault(section, {})
        try:
            target[key] = cast(raw)
        except ValueError as e:
            raise InvalidConfigurationError(f"Invalid value for {var}: {raw!r}") from e

    if enabled := environ.get("ENABLE_SELF_INDEXING"):
        cfg["self_indexing"]["enabled"] = enabled.strip().lower() == "true"


def validate_config(cfg: dict[str, Any]) -> None:
    """Reject settings the pipeline cannot run with."""
    chunking = cfg.get("chunking", {})
    chunk_size = chunking.get("chunk_size", 0)
    overlap = chunking.get("overlap", 0)
    if chunk_size <= 0:
        raise InvalidConfigurationError(f"chunking.chunk_size must be positive, got {chunk_size}")
    if not 0 <= overlap < chunk_size:
        raise InvalidConfigurationError(
            f"chunking.overlap must be in [0, chunk_size), got {overlap} for chunk_size {chunk_size}"
        )

    threshold = cfg.get("search", {}).get("similarity_threshold", 0.0)
    if not 0.0 <= threshold <= 1.0:
        raise InvalidConfigurationError(f"search.similarity_threshold must be within [0, 1], got {threshold}")

    interval = cfg.get("self_indexing", {}).get("auto_index_interval", 1)
    if interval <= 0:
        raise InvalidConfigurationError(f"self_indexing.auto_index_interval must be positive, got {interval}")

    if cfg.get("embeddings", {}).get("dimensions", 0) <= 0:
        raise InvalidConfigurationError("embeddings.dimensions must be positive")


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
