import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


@pytest.fixture(autouse=True)
def _no_live_payment_gateway(monkeypatch):
    # Settings built inside a test must never point at a real gateway.
    for name in ("PAYMENT_STATUS_URL", "PAYMENT_STATUS_KEY", "PAYMENT_WEBHOOK_SECRET"):
        monkeypatch.delenv(name, raising=False)
