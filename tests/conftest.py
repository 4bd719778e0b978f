"""测试共享替身：供应引擎 / 扫描器 / 成本估算器 / 定时器"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable

import pytest

import infragate.core.config as cfgmod
from infragate.core.approval import ApprovalCoordinator
from infragate.core.config import Config
from infragate.core.models import (
    ChangeSummary,
    ConfigSnapshot,
    CostEstimate,
    EnginePlan,
    EngineResult,
    EnvironmentSpec,
    Finding,
)
from infragate.services.container import ServiceContainer, reset_container


class FakeEngine:
    """供应引擎替身：默认每个环境 plan 出 1 个新增资源，apply 原样成功"""

    def __init__(self) -> None:
        self.plans: dict[str, Any] = {}
        self.apply_results: dict[str, Any] = {}
        self.plan_calls: list[tuple[str, ConfigSnapshot]] = []
        self.apply_calls: list[tuple[str, EnginePlan]] = []
        self.apply_hook: Callable[[str, EnginePlan], None] | None = None

    def plan(self, environment: str, snapshot: ConfigSnapshot) -> EnginePlan:
        self.plan_calls.append((environment, snapshot))
        preset = self.plans.get(environment)
        if isinstance(preset, Exception):
            raise preset
        if preset is not None:
            return preset
        return EnginePlan(
            environment=environment,
            changes=ChangeSummary(create=1),
            plan_file=f"/plans/{environment}.tfplan",
            plan_json=f"/plans/{environment}.json",
            working_dir=snapshot.working_dir,
            variables=dict(snapshot.variables),
        )

    def apply(self, environment: str, plan: EnginePlan) -> EngineResult:
        self.apply_calls.append((environment, plan))
        if self.apply_hook is not None:
            self.apply_hook(environment, plan)
        result = self.apply_results.get(environment)
        if isinstance(result, Exception):
            raise result
        return result or EngineResult(changes=plan.changes)

    @property
    def applied(self) -> list[str]:
        return [env for env, _ in self.apply_calls]


class FakeScanner:
    def __init__(self) -> None:
        self.findings: dict[str, Any] = {}
        self.calls: list[ConfigSnapshot] = []

    def scan(self, snapshot: ConfigSnapshot) -> list[Finding]:
        self.calls.append(snapshot)
        preset = self.findings.get(snapshot.environment, [])
        if isinstance(preset, Exception):
            raise preset
        return list(preset)


class FakeEstimator:
    def __init__(self, delta: int = 1234) -> None:
        self.delta = delta
        self.error: Exception | None = None
        self.calls: list[EnginePlan] = []

    def estimate(self, plan: EnginePlan) -> CostEstimate:
        self.calls.append(plan)
        if self.error is not None:
            raise self.error
        return CostEstimate(monthly_delta_minor_units=self.delta, currency="USD")


class ManualTimer:
    """手动触发的定时器：start() 不计时，fire() 模拟到期"""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class ImmediateTimer(ManualTimer):
    """start() 即到期，模拟审批超时已过"""

    def start(self) -> None:
        self.started = True
        self.fire()


class AutoDecider:
    """收到审批通知后立即按预设决策"""

    def __init__(self, decision: str, actor: str = "alice") -> None:
        self.decision = decision
        self.actor = actor
        self.coordinator: ApprovalCoordinator | None = None
        self.notified: list[str] = []

    def notify(self, record) -> None:  # type: ignore[no-untyped-def]
        self.notified.append(record.record_id)
        if self.coordinator is not None:
            self.coordinator.record_decision(record.record_id, self.actor, self.decision)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """轮询等待条件成立"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


DEFAULT_CHAIN = [
    EnvironmentSpec(name="dev", working_dir="infra/dev"),
    EnvironmentSpec(
        name="prod", protected=True, required_reviewers=["alice", "bob"],
        working_dir="infra/prod",
    ),
]


@pytest.fixture()
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    """独立数据目录的全局配置"""
    cfg = Config(
        environments_file=str(tmp_path / "environments.yml"),
        history_file=str(tmp_path / "history.json"),
        plan_dir=str(tmp_path / "plans"),
    )
    monkeypatch.setattr(cfgmod, "_current", cfg)
    reset_container()
    yield cfg
    reset_container()


@pytest.fixture()
def make_container(config: Config):
    """构建注入替身的容器

    用法: container = make_container(chain=[...], timer_factory=ManualTimer, notifier=...)
    """
    def _make(
        chain: list[EnvironmentSpec] | None = None,
        *,
        timer_factory: Callable[..., Any] = ManualTimer,
        notifier: Any = None,
    ) -> ServiceContainer:
        approvals = ApprovalCoordinator(notifier, timer_factory=timer_factory)
        if isinstance(notifier, AutoDecider):
            notifier.coordinator = approvals
        container = ServiceContainer(
            config,
            engine=FakeEngine(),
            scanner=FakeScanner(),
            estimator=FakeEstimator(),
            approvals=approvals,
        )
        for spec in DEFAULT_CHAIN if chain is None else chain:
            container.environments.register(spec)
        return container

    return _make
