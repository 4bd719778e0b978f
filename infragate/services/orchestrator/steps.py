"""编排器步骤实现

单环境步骤:
  run_gates          - 按固定顺序执行门禁（security-scan → dry-run-plan → cost-estimate）
  review_environment - review 触发：只跑门禁，报告结果
  promote_environment- promote 触发：门禁 → 复核 plan → 审批（受保护环境）→ apply

步骤只修改自己负责的 EnvironmentPlan，跨环境的顺序与汇总由 PipelineOrchestrator 负责。
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

from infragate.core.environments import build_snapshot
from infragate.core.exceptions import (
    ConcurrentExecutionError,
    PipelineCancelled,
    PipelineStateError,
)
from infragate.core.models import (
    GATE_ORDER,
    Decision,
    EnginePlan,
    EnvironmentPlan,
    EnvironmentSpec,
    EnvStatus,
    Fault,
    GateKind,
    GateResult,
    PipelineRun,
    Verdict,
)

if TYPE_CHECKING:
    from infragate.services.container import ServiceContainer

logger = logging.getLogger(__name__)

Emit = Callable[..., None]


def describe_gate_block(gate: GateResult) -> str:
    """阻断说明：哪个门禁、策略还是工具故障、首行报告"""
    cause = "工具故障" if gate.fault == Fault.INFRASTRUCTURE else "策略不通过"
    headline = gate.report.splitlines()[0] if gate.report else ""
    text = f"{gate.kind.value} 门禁失败（{cause}）"
    return f"{text}: {headline}" if headline else text


class PipelineSteps:
    """编排步骤集合"""

    def __init__(self, container: ServiceContainer, emit: Emit) -> None:
        self.c = container
        self._emit = emit

    def _spec(self, env: EnvironmentPlan) -> EnvironmentSpec:
        return env.spec or EnvironmentSpec(name=env.name, protected=env.protected)

    # ---- 门禁 ----

    def run_gates(
        self, run: PipelineRun, env: EnvironmentPlan, cancel: threading.Event,
    ) -> bool:
        """执行环境全部门禁，返回是否全部未 fail"""
        env.status = EnvStatus.RUNNING
        self._emit(run, "environment_started", environment=env.name)
        snapshot = build_snapshot(
            self._spec(env), change_ref=run.trigger.change_ref,
            run_id=run.run_id, variables=run.config.variables,
        )
        plan: EnginePlan | None = None

        for kind in GATE_ORDER:
            if cancel.is_set():
                raise PipelineCancelled(f"流水线已取消（{env.name} 门禁阶段）")
            if kind == GateKind.COST_ESTIMATE and (plan is None or not plan.ok):
                self._emit(
                    run, "gate_skipped", environment=env.name,
                    detail=f"{kind.value}: 无可用 plan",
                )
                continue
            result = self.c.gates.evaluate(
                env.name, kind, snapshot,
                plan=plan, threshold=run.config.severity_threshold,
            )
            env.gates.append(result)
            if kind == GateKind.DRY_RUN_PLAN:
                plan = result.plan
            self._emit(
                run, "gate_evaluated", environment=env.name,
                detail=f"{kind.value}={result.verdict.value}",
            )

        failed = env.failed_gates()
        if failed:
            env.status = EnvStatus.BLOCKED
            env.blocked_by = "; ".join(describe_gate_block(g) for g in failed)
            logger.warning(
                "环境 %s 被门禁阻断: %s", env.name, env.blocked_by,
                extra={"run_id": run.run_id, "environment": env.name},
            )
            return False
        return True

    def review_environment(
        self, run: PipelineRun, env: EnvironmentPlan, cancel: threading.Event,
    ) -> bool:
        """review: 仅门禁，从不 apply"""
        if not self.run_gates(run, env, cancel):
            return False
        env.status = EnvStatus.PASSED
        self._emit(run, "environment_passed", environment=env.name)
        return True

    # ---- promote ----

    def promote_environment(
        self, run: PipelineRun, env: EnvironmentPlan, cancel: threading.Event,
    ) -> bool:
        """promote: 门禁 → 复核 plan → 审批 → apply，返回是否可推进到下一环境"""
        if not self.run_gates(run, env, cancel):
            return False

        plan = self._approved_plan(env)

        if env.protected and not self._await_approval(run, env, cancel):
            return False

        if cancel.is_set():
            raise PipelineCancelled(f"流水线已取消（{env.name} apply 前）")
        return self._apply(run, env, plan, cancel)

    def _approved_plan(self, env: EnvironmentPlan) -> EnginePlan:
        """复核：apply 前必须存在通过的 dry-run-plan 门禁结果"""
        gate = env.gate(GateKind.DRY_RUN_PLAN)
        if gate is None or gate.verdict != Verdict.PASS or gate.plan is None:
            env.status = EnvStatus.FAILED
            env.blocked_by = "致命故障: apply 前缺少通过的 dry-run-plan 门禁"
            raise PipelineStateError(f"环境 {env.name} 缺少通过的 dry-run-plan 门禁")
        return gate.plan

    def _await_approval(
        self, run: PipelineRun, env: EnvironmentPlan, cancel: threading.Event,
    ) -> bool:
        spec = self._spec(env)
        timeout = spec.approval_timeout_hours
        if timeout is None:
            timeout = run.config.approval_timeout_hours
        if cancel.is_set():
            raise PipelineCancelled(f"流水线已取消（{env.name} 审批前）")

        record = self.c.approvals.request_approval(
            env.name, spec.required_reviewers,
            run_id=run.run_id, timeout_hours=timeout,
        )
        env.approval = record
        self._emit(
            run, "approval_requested", environment=env.name,
            detail=f"record={record.record_id}",
        )

        record = self.c.approvals.wait(record.record_id, cancel)
        if cancel.is_set():
            raise PipelineCancelled(f"流水线已取消（{env.name} 等待审批）")

        self._emit(
            run, "approval_resolved", environment=env.name,
            detail=record.decision.value,
        )
        if record.decision == Decision.APPROVED:
            return True

        env.status = EnvStatus.BLOCKED
        who = f" by {record.decided_by}" if record.decided_by else ""
        env.blocked_by = f"审批未通过: {record.decision.value}{who}"
        logger.warning(
            "环境 %s 审批未通过: %s", env.name, record.decision.value,
            extra={"run_id": run.run_id, "environment": env.name},
        )
        return False

    def _apply(
        self, run: PipelineRun, env: EnvironmentPlan,
        plan: EnginePlan, cancel: threading.Event,
    ) -> bool:
        self._emit(run, "apply_started", environment=env.name)
        try:
            execution = self.c.executor.apply(env.name, plan, cancel=cancel)
        except ConcurrentExecutionError as e:
            env.status = EnvStatus.BLOCKED
            env.blocked_by = f"并发执行冲突: {e}"
            self._emit(run, "apply_rejected", environment=env.name, detail=e.code)
            return False
        except PipelineStateError as e:
            env.status = EnvStatus.FAILED
            env.blocked_by = f"致命故障: {e}"
            raise

        env.execution = execution
        self._emit(
            run, "apply_finished", environment=env.name,
            detail=execution.outcome.value,
        )
        if execution.succeeded:
            env.status = EnvStatus.APPLIED
            return True
        env.status = EnvStatus.FAILED
        env.blocked_by = f"apply 失败: {execution.error}"
        return False
