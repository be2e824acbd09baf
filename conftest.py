"""Pytest configuration.

Services import each other as `services.<name>.app...` and `libs...`, so the
repository root has to be importable during collection.
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture
def cache():
    """Fresh in-process cache."""
    from libs.common.cache import Cache, InMemoryBackend

    return Cache(InMemoryBackend())


@pytest.fixture
def audit():
    """Audit logger with its own in-memory store so tests never share a queue."""
    from libs.common.audit import AuditLogger, InMemoryAuditLogStore

    return AuditLogger(InMemoryAuditLogStore())
