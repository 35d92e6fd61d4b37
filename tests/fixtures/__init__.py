"""
Test fixtures package.

This package provides reusable pytest fixtures for testing the upload
pipeline. Import fixtures into conftest.py to make them available to all tests.

Available fixture modules:
- database: Async SQLAlchemy fixtures backing the SQL key-value store
"""
