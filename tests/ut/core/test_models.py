"""核心数据模型单元测试"""

from __future__ import annotations

import pytest

from infragate.core.exceptions import PipelineStateError, ValidationError
from infragate.core.models import (
    ChangeSummary,
    EnvironmentPlan,
    GateKind,
    GateResult,
    PipelineRun,
    RunStatus,
    Severity,
    TriggerEvent,
    TriggerKind,
    Verdict,
)


class TestSeverity:
    def test_rank_order(self) -> None:
        ranks = [s.rank for s in (
            Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM,
            Severity.LOW, Severity.INFO, Severity.UNKNOWN,
        )]
        assert ranks == sorted(ranks, reverse=True)

    def test_parse_lenient(self) -> None:
        assert Severity.parse("CRITICAL") is Severity.CRITICAL
        assert Severity.parse(" High ") is Severity.HIGH
        assert Severity.parse("bogus") is Severity.UNKNOWN
        assert Severity.parse(Severity.LOW) is Severity.LOW


class TestTriggerEvent:
    def test_from_dict(self) -> None:
        event = TriggerEvent.from_dict(
            {"kind": "promote", "change_ref": "abc123", "environments": ["prod"]},
        )
        assert event.kind is TriggerKind.PROMOTE
        assert event.change_ref == "abc123"
        assert event.environments == ["prod"]

    def test_invalid_kind(self) -> None:
        with pytest.raises(ValidationError):
            TriggerEvent.from_dict({"kind": "deploy"})

    def test_environments_must_be_list(self) -> None:
        with pytest.raises(ValidationError):
            TriggerEvent.from_dict({"kind": "review", "environments": "dev"})


class TestGateResult:
    def test_warn_counts_as_passed(self) -> None:
        warn = GateResult(kind=GateKind.SECURITY_SCAN, verdict=Verdict.WARN)
        fail = GateResult(kind=GateKind.SECURITY_SCAN, verdict=Verdict.FAIL)
        assert warn.passed is True
        assert fail.passed is False

    def test_immutable(self) -> None:
        result = GateResult(kind=GateKind.DRY_RUN_PLAN, verdict=Verdict.PASS)
        with pytest.raises(AttributeError):
            result.verdict = Verdict.FAIL  # type: ignore[misc]


class TestEnvironmentPlan:
    def test_gate_returns_latest(self) -> None:
        env = EnvironmentPlan(name="dev")
        env.gates.append(GateResult(kind=GateKind.DRY_RUN_PLAN, verdict=Verdict.FAIL))
        env.gates.append(GateResult(kind=GateKind.DRY_RUN_PLAN, verdict=Verdict.PASS))
        assert env.gate(GateKind.DRY_RUN_PLAN).verdict is Verdict.PASS
        assert env.gate(GateKind.COST_ESTIMATE) is None


class TestPipelineRun:
    def _run(self) -> PipelineRun:
        return PipelineRun(
            trigger=TriggerEvent(kind=TriggerKind.REVIEW),
            environments=[EnvironmentPlan(name="dev")],
        )

    def test_lifecycle(self) -> None:
        run = self._run()
        assert run.status is RunStatus.PENDING
        run.transition(RunStatus.RUNNING)
        assert run.started_at is not None
        run.transition(RunStatus.SUCCEEDED)
        assert run.finished_at is not None
        assert run.status.terminal

    def test_terminal_is_final(self) -> None:
        run = self._run()
        run.transition(RunStatus.RUNNING)
        run.transition(RunStatus.FAILED)
        with pytest.raises(PipelineStateError):
            run.transition(RunStatus.RUNNING)

    def test_pending_cannot_succeed(self) -> None:
        with pytest.raises(PipelineStateError):
            self._run().transition(RunStatus.SUCCEEDED)

    def test_environment_lookup(self) -> None:
        run = self._run()
        assert run.environment("dev").name == "dev"
        with pytest.raises(PipelineStateError):
            run.environment("prod")

    def test_to_dict(self) -> None:
        data = self._run().to_dict()
        assert data["trigger"]["kind"] == "review"
        assert data["status"] == "pending"
        assert data["environments"][0]["name"] == "dev"


def test_change_summary() -> None:
    c = ChangeSummary(create=1, update=2, destroy=3)
    assert c.total == 6
    assert c.has_changes
    assert not ChangeSummary().has_changes
