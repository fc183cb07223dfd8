"""Chunking and document ingestion."""
