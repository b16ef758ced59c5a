import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from core import metrics


@pytest.fixture(autouse=True)
def isolated_workdir(tmp_path, monkeypatch):
    """Run each test in its own directory so logs/ and flags/ stay local."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ERROR_LOG_FILE", str(tmp_path / "logs" / "errors.log"))
    for var in [v for v in os.environ if v.startswith("DATACAP_")] + ["OPS_ALERT_WEBHOOK"]:
        monkeypatch.delenv(var, raising=False)
    metrics.reset_metrics()
    yield
