"""CLI entry point for devkb."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import load_config, DEFAULT_CONFIG
from .errors import KnowledgeBaseError
from .models import DocumentType, ScoringMode

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # chatty third-party loggers
    for name in ("httpx", "chromadb", "sentence_transformers"):
        logging.getLogger(name).setLevel(logging.WARNING)


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """devkb - ingest, chunk and search a development knowledge base."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_config(ctx) -> dict:
    try:
        config = load_config(ctx.obj.get("config_path"))
    except KnowledgeBaseError as e:
        _fail(e)
    _setup_logging("DEBUG" if ctx.obj.get("verbose") else config.get("log_level", "INFO"))
    return config


def _get_processor(config: dict):
    from .ingest.processor import DocumentProcessor
    return DocumentProcessor.from_config(config)


def _fail(error: KnowledgeBaseError):
    console.print(f"[red]✗ {error.code}: {error.message}[/]")
    if error.details.get("errors"):
        for detail in error.details["errors"]:
            console.print(f"  [dim]{'.'.join(str(p) for p in detail['loc'])}: {detail['msg']}[/]")
    sys.exit(1)


@cli.command()
@click.option("--path", default=None, help="Directory to write config.yaml into")
def init(path):
    """Write a starter config.yaml."""
    import yaml

    base = Path(path).expanduser().resolve() if path else Path("~/.devkb").expanduser()
    base.mkdir(parents=True, exist_ok=True)
    config_file = base / "config.yaml"
    if config_file.exists():
        console.print(f"[yellow]Config already exists: {config_file}[/]")
        return

    cfg = dict(DEFAULT_CONFIG)
    cfg["chroma_path"] = str(base / "chroma")
    header = (
        "# Embedding provider: sentence-transformers (local), openai (or any\n"
        "# OpenAI-compatible endpoint via base_url), or hash (offline testing)\n"
        "# OPENAI_API_KEY overrides embeddings.api_key\n\n"
    )
    config_file.write_text(header + yaml.dump(cfg, default_flow_style=False, allow_unicode=True))
    console.print(f"[bold green]✓ Created config: {config_file}[/]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", default=None, help="Title (default: file name)")
@click.option("--type", "doc_type", type=click.Choice([t.value for t in DocumentType]), default="txt")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--chunked", is_flag=True, help="Also split into embedded chunks")
@click.option("--chunk-size", type=int, default=None)
@click.option("--overlap", type=int, default=None)
@click.pass_context
def add(ctx, path, title, doc_type, tags, chunked, chunk_size, overlap):
    """Add a file to the knowledge base."""
    config = _get_config(ctx)
    processor = _get_processor(config)
    request = {
        "title": title or path.name,
        "content": path.read_text(encoding="utf-8", errors="replace"),
        "metadata": {"source": str(path), "type": doc_type, "tags": list(tags), "file_path": str(path)},
    }
    try:
        if chunked:
            doc = processor.add_document_with_chunks(request, chunk_size=chunk_size, overlap=overlap)
        else:
            doc = processor.add_document(request)
    except KnowledgeBaseError as e:
        _fail(e)

    console.print(f"[green]✓ Added {doc.title}[/] [dim]({doc.id})[/]")
    if doc.chunks:
        console.print(f"  {len(doc.chunks)} chunk(s)")


@cli.command()
@click.argument("document_id")
@click.pass_context
def get(ctx, document_id):
    """Show a stored document."""
    config = _get_config(ctx)
    try:
        doc = _get_processor(config).get_document(document_id)
    except KnowledgeBaseError as e:
        _fail(e)
    if doc is None:
        console.print(f"[yellow]No document with id {document_id}[/]")
        sys.exit(1)

    console.print(f"[bold cyan]{doc.title}[/] [dim]v{doc.version} · {doc.status.value}[/]")
    console.print(f"  Source: {doc.metadata.source}  Type: {doc.metadata.type.value}")
    if doc.metadata.tags:
        console.print(f"  Tags: {', '.join(doc.metadata.tags)}")
    console.print(f"  Updated: {doc.updated_at.isoformat()}  Chunks: {len(doc.chunks)}\n")
    console.print(doc.content[:2000])


@cli.command()
@click.argument("document_id")
@click.option("--title", default=None)
@click.option("--content-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
@click.option("--tag", "tags", multiple=True, help="Replace tags (repeatable)")
@click.pass_context
def update(ctx, document_id, title, content_file, tags):
    """Update a document's title, content or tags."""
    config = _get_config(ctx)
    updates = {}
    if title:
        updates["title"] = title
    if content_file:
        updates["content"] = content_file.read_text(encoding="utf-8", errors="replace")
    if tags:
        updates["metadata"] = {"tags": list(tags)}
    try:
        doc = _get_processor(config).update_document(document_id, updates)
    except KnowledgeBaseError as e:
        _fail(e)
    console.print(f"[green]✓ Updated {doc.title}[/] [dim](v{doc.version})[/]")


@cli.command()
@click.argument("document_id")
@click.pass_context
def delete(ctx, document_id):
    """Delete a document (no error if it does not exist)."""
    config = _get_config(ctx)
    try:
        _get_processor(config).delete_document(document_id)
    except KnowledgeBaseError as e:
        _fail(e)
    console.print(f"[green]✓ Deleted {document_id}[/]")


@cli.command()
@click.argument("query")
@click.option("--n", "-n", default=None, type=int, help="Number of results")
@click.option("--threshold", "-t", default=None, type=float, help="Minimum similarity (0-1)")
@click.option("--type", "doc_types", multiple=True, type=click.Choice([t.value for t in DocumentType]))
@click.option("--tag", "tags", multiple=True)
@click.option("--source", "sources", multiple=True)
@click.option("--chunks", is_flag=True, help="Show best matching chunks")
@click.pass_context
def search(ctx, query, n, threshold, doc_types, tags, sources, chunks):
    """Semantic search over the knowledge base."""
    from .query.search import semantic_search

    config = _get_config(ctx)
    filters = {
        k: list(v) for k, v in (("document_types", doc_types), ("tags", tags), ("sources", sources)) if v
    }
    console.print(f"[blue]Searching for: '{query}'[/]\n")
    try:
        results = semantic_search(
            query, config, n_results=n, similarity_threshold=threshold,
            filters=filters or None, include_chunks=chunks,
        )
    except KnowledgeBaseError as e:
        _fail(e)

    if not results:
        console.print("[yellow]No results above the similarity threshold.[/]")
        return

    table = Table(title="Search Results")
    table.add_column("#", style="dim", width=3)
    table.add_column("Title", style="cyan")
    table.add_column("Type")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Preview", max_width=60)

    for i, r in enumerate(results, 1):
        score = f"{r.score:.3f}" if r.scoring == ScoringMode.SEMANTIC else f"{r.score:.3f} (lexical)"
        preview = r.document.content[:80].replace("\n", " ")
        table.add_row(str(i), r.document.title, r.document.metadata.type.value, score, preview)

    console.print(table)
    if any(r.scoring == ScoringMode.LEXICAL for r in results):
        console.print("[dim]Lexical scores are substring matches, not semantic similarity.[/]")
    if chunks:
        for i, r in enumerate(results, 1):
            for m in r.matched_chunks:
                snippet = m.chunk.content[:100].replace("\n", " ")
                console.print(f"  [dim]{i}. chunk {m.chunk.chunk_index} ({m.score:.3f}):[/] {snippet}")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show collection statistics and connectivity."""
    config = _get_config(ctx)
    processor = _get_processor(config)
    try:
        s = processor.get_stats()
    except KnowledgeBaseError as e:
        _fail(e)
    connections = processor.test_connections()

    console.print("\n[bold]📊 Knowledge Base Statistics[/]")
    console.print(f"  Collection: {s['collection_name']}")
    console.print(f"  Total documents: {s['total_documents']}")
    info = processor.embedder.provider_info()
    console.print(f"  Embeddings: {info['provider']} / {info['model']} ({processor.embedder.dimensions} dims)")
    for name, ok in connections.items():
        mark = "[green]✓[/]" if ok else "[red]✗[/]"
        console.print(f"  {mark} {name}")


@cli.command()
@click.option("--root", default=None, help="Project root to index (default: self_indexing.root)")
@click.pass_context
def index(ctx, root):
    """Run one self-indexing pass over the project."""
    from .indexing.scheduler import SelfIndexer

    config = _get_config(ctx)
    if root:
        config["self_indexing"]["root"] = root
    indexer = SelfIndexer(_get_processor(config), config)
    console.print(f"[blue]Indexing {indexer.settings.root}...[/]")
    indexer.trigger_indexing()
    status = indexer.get_status()
    console.print(f"[green]✓ Indexing pass finished at {status.last_indexed.isoformat()}[/]")


@cli.command()
@click.option("--root", default=None, help="Project root to index (default: self_indexing.root)")
@click.option("--interval", default=None, type=int, help="Milliseconds between passes")
@click.pass_context
def watch(ctx, root, interval):
    """Re-index the project periodically until Ctrl+C."""
    from .indexing.scheduler import SelfIndexer

    config = _get_config(ctx)
    if root:
        config["self_indexing"]["root"] = root
    if interval:
        config["self_indexing"]["auto_index_interval"] = interval
    indexer = SelfIndexer(_get_processor(config), config)
    if not indexer.enabled:
        console.print("[yellow]self_indexing.enabled is false in config. Nothing to do.[/]")
        return
    console.print(f"[bold]👀 Indexing {indexer.settings.root} every {indexer.interval:.0f}s... (Ctrl+C to stop)[/]")
    indexer.run_forever()
    console.print("[green]✓ Self-indexer stopped.[/]")


if __name__ == "__main__":
    cli()
