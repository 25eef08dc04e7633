import sys
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def _fresh_rate_gate(monkeypatch):
    """Start every test without a cached default rate gate."""
    from services import rate_gate

    monkeypatch.setattr(rate_gate, "_default_rate_gate", None)
    yield
