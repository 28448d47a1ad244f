"""
Pytest configuration and fixtures for deployment manager tests.
"""

import os

import pytest


def pytest_configure(config):
    """
    Set environment variables before any test modules are imported.
    """
    os.environ.pop("DEPLOYMENT_MANAGER_OPERATION_SECRET", None)


@pytest.fixture(autouse=True)
def audit_log(tmp_path, monkeypatch):
    """Keep audit records inside the test's temp directory."""
    path = tmp_path / "audit" / "audit.jsonl"
    monkeypatch.setattr("deployment_manager.audit.AUDIT_LOG_PATH", path)
    return path
