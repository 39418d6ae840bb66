"""
LRM Catalog Test Suite.

This package contains:
- unit/: Unit tests (registry, types, config, CLI; no database)
- integration/: Integration tests (SQLite stores and the HTTP transport)
"""
