"""RunHistory 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from infragate.core.exceptions import NotFoundError
from infragate.core.history import RunHistory
from infragate.core.reporter import Report


def _report(run_id: str, status: str = "succeeded", kind: str = "review",
            finished_at: str = "2026-01-01T00:00:00", envs=("dev",)) -> Report:  # type: ignore[no-untyped-def]
    return Report(
        run_id=run_id, kind=kind, change_ref="abc", status=status,
        finished_at=finished_at,
        environments=[{"name": e, "status": "passed"} for e in envs],
    )


@pytest.fixture()
def history(tmp_path: Path) -> RunHistory:
    return RunHistory(str(tmp_path / "data" / "history.json"))


class TestRunHistory:
    def test_empty(self, history) -> None:
        assert history.query() == []

    def test_record_and_get(self, history) -> None:
        history.record(_report("r1"))
        got = history.get("r1")
        assert got.run_id == "r1"
        assert got.environments[0]["name"] == "dev"

    def test_get_missing(self, history) -> None:
        with pytest.raises(NotFoundError):
            history.get("nope")

    def test_query_filters_and_order(self, history) -> None:
        history.record(_report("r1", finished_at="2026-01-01T00:00:00"))
        history.record(_report("r2", status="failed", kind="promote",
                               finished_at="2026-01-02T00:00:00", envs=("dev", "prod")))
        history.record(_report("r3", finished_at="2026-01-03T00:00:00"))

        assert [r["run_id"] for r in history.query()] == ["r3", "r2", "r1"]
        assert [r["run_id"] for r in history.query(status="failed")] == ["r2"]
        assert [r["run_id"] for r in history.query(kind="review")] == ["r3", "r1"]
        assert [r["run_id"] for r in history.query(environment="prod")] == ["r2"]
        assert len(history.query(limit=1)) == 1

    def test_persisted_across_instances(self, history, tmp_path: Path) -> None:
        history.record(_report("r1"))
        again = RunHistory(str(tmp_path / "data" / "history.json"))
        assert again.get("r1").status == "succeeded"
