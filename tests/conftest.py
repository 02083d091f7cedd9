from __future__ import annotations

from pathlib import Path

import pytest


_ISOLATED_ENV_VARS = (
    "REQUEST_TIMEOUT_MS",
    "CONCURRENCY",
    "RELIC_SNAPSHOT_DELAY",
    "RELIC_SNAPSHOT_LIMIT",
    "OPENSEA_API_KEY",
    "NEXT_PUBLIC_OPENSEA_API_KEY",
    "OPENSEA_API_BASE",
    "RELICS_COLLECTION_SLUG",
    "PHOSPHOR_API_BASE",
    "PHOSPHOR_COLLECTION_ID",
    "POINTS_API_BASE",
    "RELICS_RARITIES",
    "RELICS_SNAPSHOT_DIR",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer shell settings out of the tests and run inside tmp_path."""
    for key in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
