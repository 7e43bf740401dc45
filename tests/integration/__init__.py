"""
Integration tests for the Inventory Operations Agent.

These tests drive the supervisor end to end (collection, classification,
healing, prediction, recommendation, review) with an in-memory store and
mocked external services.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
