from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep tests away from the developer's .env and history file."""
    monkeypatch.setenv("DUNE_PAGER_SKIP_DOTENV", "1")
    monkeypatch.setenv("DUNE_QUERY_HISTORY", str(tmp_path / "queries.jsonl"))
    for name in ("DUNE_API_URL", "DUNE_HTTP_TIMEOUT", "DUNE_POLL_INTERVAL", "DUNE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
