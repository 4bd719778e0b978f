"""EnvironmentExecutor 单元测试"""

from __future__ import annotations

import threading

import pytest

from conftest import FakeEngine
from infragate.core.exceptions import (
    ConcurrentExecutionError,
    PipelineCancelled,
    PipelineStateError,
    ToolError,
)
from infragate.core.executor import EnvironmentExecutor
from infragate.core.models import ChangeSummary, EnginePlan, EngineResult, Outcome


def _plan(env: str = "prod", **kwargs) -> EnginePlan:  # type: ignore[no-untyped-def]
    kwargs.setdefault("changes", ChangeSummary(create=1))
    return EnginePlan(environment=env, plan_file=f"{env}.tfplan", **kwargs)


class TestApply:
    def test_success_uses_given_plan(self) -> None:
        engine = FakeEngine()
        plan = _plan()
        result = EnvironmentExecutor(engine).apply("prod", plan)
        assert result.outcome is Outcome.SUCCESS
        assert result.changes.create == 1
        assert engine.apply_calls == [("prod", plan)]
        assert engine.plan_calls == []
        assert result.finished_at >= result.started_at

    def test_no_changes(self) -> None:
        engine = FakeEngine()
        result = EnvironmentExecutor(engine).apply("prod", _plan(changes=ChangeSummary()))
        assert result.outcome is Outcome.NO_CHANGES
        assert result.succeeded

    def test_engine_error_is_failure(self) -> None:
        engine = FakeEngine()
        engine.apply_results["prod"] = EngineResult(error="quota exceeded")
        result = EnvironmentExecutor(engine).apply("prod", _plan())
        assert result.outcome is Outcome.FAILURE
        assert result.error == "quota exceeded"

    def test_tool_error_is_failure(self) -> None:
        engine = FakeEngine()
        engine.apply_results["prod"] = ToolError("terraform", "命令超时 (1800s)")
        result = EnvironmentExecutor(engine).apply("prod", _plan())
        assert result.outcome is Outcome.FAILURE
        assert "命令超时" in result.error

    def test_unexpected_engine_exception_is_failure(self) -> None:
        engine = FakeEngine()
        engine.apply_results["prod"] = RuntimeError("provider plugin crashed")
        executor = EnvironmentExecutor(engine)
        result = executor.apply("prod", _plan())
        assert result.outcome is Outcome.FAILURE
        assert result.error == "RuntimeError: provider plugin crashed"
        assert not executor.is_busy("prod")

    def test_plan_for_other_environment_rejected(self) -> None:
        engine = FakeEngine()
        with pytest.raises(PipelineStateError):
            EnvironmentExecutor(engine).apply("prod", _plan("dev"))
        assert engine.apply_calls == []

    def test_errored_plan_rejected(self) -> None:
        with pytest.raises(PipelineStateError):
            EnvironmentExecutor(FakeEngine()).apply("prod", _plan(error="boom"))

    def test_cancelled_before_engine(self) -> None:
        engine = FakeEngine()
        cancel = threading.Event()
        cancel.set()
        executor = EnvironmentExecutor(engine)
        with pytest.raises(PipelineCancelled):
            executor.apply("prod", _plan(), cancel=cancel)
        assert engine.apply_calls == []
        assert not executor.is_busy("prod")


class TestMutualExclusion:
    def test_concurrent_apply_rejected(self) -> None:
        engine = FakeEngine()
        entered = threading.Event()
        release = threading.Event()

        def hook(environment: str, plan: EnginePlan) -> None:
            if environment == "prod":
                entered.set()
                release.wait(timeout=5)

        engine.apply_hook = hook
        executor = EnvironmentExecutor(engine)
        t = threading.Thread(target=executor.apply, args=("prod", _plan()))
        t.start()
        try:
            assert entered.wait(timeout=5)
            assert executor.is_busy("prod")
            with pytest.raises(ConcurrentExecutionError):
                executor.apply("prod", _plan())
            # 其他环境不受影响
            assert executor.apply("dev", _plan("dev")).succeeded
        finally:
            release.set()
            t.join(timeout=5)
        assert not executor.is_busy("prod")
        assert engine.applied.count("prod") == 1

    def test_lock_released_after_failure(self) -> None:
        engine = FakeEngine()
        engine.apply_results["prod"] = EngineResult(error="boom")
        executor = EnvironmentExecutor(engine)
        executor.apply("prod", _plan())
        assert not executor.is_busy("prod")
