from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("EW_DATA_DIR", str(tmp_path / "data"))
    for name in (
        "EW_CONFIG_PATH",
        "EW_ADMIN_TOKEN",
        "EW_NOTIFY_WEBHOOK_URL",
        "EW_OPENWEATHER_API_KEY",
        "EW_SCHEDULER_ENABLED",
        "EW_LOG_FILE",
        "EW_LOG_LEVELS",
    ):
        monkeypatch.delenv(name, raising=False)
