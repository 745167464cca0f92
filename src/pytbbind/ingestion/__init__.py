"""Ingestion layer.

This package contains the helpers that turn heterogeneous backend read
responses into the single scalar values the cache stores.
"""

__all__: list[str] = []
