"""
Functional tests for vmscout.

These tests drive full discovery passes and endpoint bootstrap over the
in-memory collaborators in ``tests.fixtures``.

Usage:
    pytest tests/functional/
"""
