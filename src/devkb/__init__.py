"""devkb - development knowledge base: ingestion, chunking and self-indexing."""

__version__ = "0.1.0"
