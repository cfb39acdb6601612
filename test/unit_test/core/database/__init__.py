"""Unit tests for the centralized database layer.

This package contains unit tests for medprep_ai/core/database, including:

- Entity model defaults and helpers (SQLModel)
- Repository queries against in-memory SQLite

All tests use in-memory SQLite to ensure fast execution without
requiring external database services.
"""
