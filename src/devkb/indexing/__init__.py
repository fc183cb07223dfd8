"""Scheduled self-indexing of the project tree."""
