"""
Tests Package - Unit and Integration Tests

Test structure:
- tests/unit/ - Fast, isolated tests of config, fetcher, projector, writer, scheduler
- tests/integration/ - CLI and watch runs against an httpx MockTransport endpoint
- tests/conftest.py - Shared fixtures (sample documents, mock endpoint)
"""
