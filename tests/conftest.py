from __future__ import annotations

from pathlib import Path

import pytest

from memkeep.config import CONFIG_ENV_OVERRIDES


@pytest.fixture(autouse=True)
def _isolate_memkeep_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("MEMKEEP_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("MEMKEEP_MANIFEST", str(tmp_path / "no-manifest.json"))
