"""Relevance scoring and search."""
