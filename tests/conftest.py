"""Pytest configuration shared by the whole suite.

- Puts the workspace ``packages/`` directory (and the repo root, for
  ``tests.helpers``) on ``sys.path`` so tests run without an install.
- Clears the ``LEDGERVIZ_*`` environment variables per test so a developer's
  shell or ``.env`` cannot change worker counts or log levels under test.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
# ``packages/`` precedes the repo root so local packages resolve first.
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LEDGERVIZ_MAX_WORKERS", "LEDGERVIZ_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
