"""Content discovery for self-indexing: file walks, tree rendering and git history."""

import hashlib
import logging
import mimetypes
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..models import CONTEXT_DOCUMENT_TYPES, DevelopmentContext, DocumentType
from ..schemas import CreateDocumentRequest, DocumentMetadataIn

logger = logging.getLogger(__name__)

DIR_MARKER = "📁"
FILE_MARKER = "📄"
INDENT = "  "


@dataclass
class SweepSettings:
    """What the self-indexer looks at, relative to ``root``."""
    root: Path
    docs_dir: str = "docs"
    src_dir: str = "src"
    doc_files: tuple[str, ...] = ("README.md", "CHANGELOG.md", "CONTRIBUTING.md")
    doc_extensions: frozenset[str] = frozenset({".md", ".txt", ".rst", ".adoc"})
    code_extensions: frozenset[str] = frozenset({".py", ".pyi", ".ts", ".js", ".tsx", ".jsx", ".json", ".yaml", ".yml", ".toml"})
    config_files: tuple[str, ...] = ("pyproject.toml", "setup.cfg", "package.json", "tsconfig.json", "docker-compose.yml", "Dockerfile")
    exclude_dirs: frozenset[str] = frozenset({"node_modules", ".git", "dist", "build", "__pycache__", ".venv", "venv"})
    history_days: int = 7

    @classmethod
    def from_config(cls, si_cfg: dict[str, Any]) -> "SweepSettings":
        defaults = cls(root=Path("."))
        return cls(
            root=Path(si_cfg.get("root", ".")).expanduser().resolve(),
            docs_dir=si_cfg.get("docs_dir", defaults.docs_dir),
            src_dir=si_cfg.get("src_dir", defaults.src_dir),
            doc_files=tuple(si_cfg.get("doc_files", defaults.doc_files)),
            doc_extensions=frozenset(si_cfg.get("doc_extensions", defaults.doc_extensions)),
            code_extensions=frozenset(si_cfg.get("code_extensions", defaults.code_extensions)),
            config_files=tuple(si_cfg.get("config_files", defaults.config_files)),
            exclude_dirs=frozenset(si_cfg.get("exclude_dirs", defaults.exclude_dirs)),
            history_days=int(si_cfg.get("history_days", defaults.history_days)),
        )


def collect_files(directory: Path, extensions: frozenset[str], exclude_dirs: frozenset[str]) -> list[Path]:
    """Recursively list files under ``directory`` whose suffix is allowed.

    Excluded and symlinked directories are not entered. A subtree that
    cannot be read is logged and skipped.
    """
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        logger.warning("Failed to read directory %s: %s", directory, e)
        return files

    for entry in entries:
        try:
            if entry.is_dir():
                if entry.name in exclude_dirs or entry.is_symlink():
                    continue
                files.extend(collect_files(entry, extensions, exclude_dirs))
            elif entry.is_file() and entry.suffix in extensions:
                files.append(entry)
        except OSError as e:
            logger.warning("Failed to inspect %s: %s", entry, e)
    return files


def render_tree(directory: Path, exclude_dirs: frozenset[str], prefix: str = "") -> str:
    """Render the directory tree as indented text, directories marked distinctly."""
    lines: list[str] = []
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        logger.warning("Failed to generate structure for %s: %s", directory, e)
        return ""

    for entry in entries:
        is_dir = entry.is_dir()
        if is_dir and entry.name in exclude_dirs:
            continue
        if is_dir and not entry.is_symlink():
            lines.append(f"{prefix}{DIR_MARKER} {entry.name}/")
            sub = render_tree(entry, exclude_dirs, prefix + INDENT)
            if sub:
                lines.append(sub)
        else:
            lines.append(f"{prefix}{FILE_MARKER} {entry.name}")
    return "\n".join(lines)


def run_git(args: list[str], cwd: Path) -> str:
    """Run a git command and return stdout.

    Raises:
        FileNotFoundError: If git is not installed.
        subprocess.CalledProcessError: If git exits non-zero (e.g. not a repository).
    """
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout


def file_document_id(relative_path: str) -> str:
    """Stable id for a file so re-indexing replaces rather than duplicates."""
    return hashlib.sha256(f"file:{relative_path}".encode("utf-8")).hexdigest()[:32]


def _timestamp_id(prefix: str, now: datetime) -> str:
    return f"{prefix}-{int(now.timestamp() * 1000)}"


def file_request(path: Path, root: Path, context: DevelopmentContext, content: str, content_hash: str) -> CreateDocumentRequest:
    """Build the create request for one project file."""
    try:
        relative = path.relative_to(root).as_posix()
    except ValueError:
        relative = path.as_posix()
    extension = path.suffix.lstrip(".")
    tags = [context.value] + ([extension] if extension else [])
    mime_type = mimetypes.guess_type(path.name)[0] or "text/plain"

    return CreateDocumentRequest(
        document_id=file_document_id(relative),
        title=path.name,
        content=content,
        metadata=DocumentMetadataIn(
            source=relative,
            type=CONTEXT_DOCUMENT_TYPES.get(context, DocumentType.TXT),
            tags=tags,
            mime_type=mime_type,
            file_path=relative,
            custom_fields={"content_hash": content_hash, "context": context.value},
        ),
    )


def history_requests(root: Path, days: int, now: datetime) -> list[CreateDocumentRequest]:
    """Recent commits and, if the tree is dirty, branch + status, as requests."""
    requests = []

    commits = run_git(["log", "--oneline", f"--since={days} days ago", "--pretty=format:%h %s"], root)
    if commits.strip():
        requests.append(CreateDocumentRequest(
            document_id=_timestamp_id("git-history", now),
            title="Recent Development History",
            content=commits,
            metadata=DocumentMetadataIn(
                source="git-history",
                type=DocumentType.DEVELOPMENT_HISTORY,
                tags=["git", "development", "history"],
            ),
        ))

    branch = run_git(["branch", "--show-current"], root).strip()
    status = run_git(["status", "--porcelain"], root)
    if status.strip():
        requests.append(CreateDocumentRequest(
            document_id=_timestamp_id("git-status", now),
            title=f"Git Status - {branch}",
            content=f"Branch: {branch}\nStatus:\n{status}",
            metadata=DocumentMetadataIn(
                source="git-status",
                type=DocumentType.DEVELOPMENT_STATUS,
                tags=["git", "development", "status"],
            ),
        ))
    return requests


def structure_request(root: Path, exclude_dirs: frozenset[str], now: datetime) -> CreateDocumentRequest:
    structure = render_tree(root, exclude_dirs)
    return CreateDocumentRequest(
        document_id=_timestamp_id("project-structure", now),
        title="Project Structure",
        content=structure,
        metadata=DocumentMetadataIn(
            source="project-structure",
            type=DocumentType.PROJECT_STRUCTURE,
            tags=["project", "structure", "development"],
        ),
    )
