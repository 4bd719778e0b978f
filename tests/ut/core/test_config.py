"""Config 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from infragate.core.config import Config
from infragate.core.exceptions import ConfigError, ValidationError
from infragate.core.models import Severity


class TestConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        cfg = Config.from_file(str(tmp_path / "nope.yml"))
        assert cfg.severity_threshold == "high"
        assert cfg.max_parallel == 4

    def test_from_file_with_extra(self, tmp_path: Path) -> None:
        path = tmp_path / "default.yml"
        path.write_text(
            "severity_threshold: medium\nmax_parallel: 2\nteam: platform\n",
            encoding="utf-8",
        )
        cfg = Config.from_file(str(path))
        assert cfg.severity_threshold == "medium"
        assert cfg.max_parallel == 2
        assert cfg.extra == {"team": "platform"}

    @pytest.mark.parametrize("content", [
        "severity_threshold: extreme\n",
        "max_parallel: 0\n",
        "notifier: email\n",
        "notifier: webhook\n",
        "approval_timeout_hours: 0\n",
        "approval_timeout_hours: -1\n",
        "retained_runs: -1\n",
    ])
    def test_invalid(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "bad.yml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            Config.from_file(str(path))

    def test_run_config(self) -> None:
        cfg = Config(severity_threshold="critical", variables={"region": "eu"})
        rc = cfg.run_config(approval_timeout_hours=2.0, max_parallel=None)
        assert rc.severity_threshold is Severity.CRITICAL
        assert rc.approval_timeout_hours == 2.0
        assert rc.max_parallel == 4
        rc.variables["token"] = "x"
        assert "token" not in cfg.variables

    @pytest.mark.parametrize("hours", [0, -2.5])
    def test_run_config_rejects_non_positive_timeout(self, hours: float) -> None:
        with pytest.raises(ValidationError):
            Config().run_config(approval_timeout_hours=hours)

    def test_run_config_allows_no_expiry(self) -> None:
        assert Config(approval_timeout_hours=None).run_config().approval_timeout_hours is None
