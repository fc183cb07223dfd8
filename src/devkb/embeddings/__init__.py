"""Embedding providers and the retrying embedding client."""
