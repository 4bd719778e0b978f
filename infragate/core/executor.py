"""环境执行器

封装供应引擎对单个环境的 apply:
  - 只使用前置 dry-run-plan 门禁产出的 plan，绝不在 apply 前重新 plan（防止审批与执行漂移）
  - 每个环境至多一个执行中的 apply，锁被占用时立即抛 ConcurrentExecutionError，不排队
  - 引擎失败记录为 outcome=failure 并携带引擎诊断信息
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from infragate.core.exceptions import (
    ConcurrentExecutionError,
    PipelineCancelled,
    PipelineStateError,
    ToolError,
)
from infragate.core.models import (
    EnginePlan,
    ExecutionResult,
    OperationKind,
    Outcome,
    utcnow,
)

if TYPE_CHECKING:
    from infragate.core.protocols import ProvisioningEngine

logger = logging.getLogger(__name__)


class EnvironmentExecutor:
    """按环境互斥的 apply 执行器"""

    def __init__(self, engine: ProvisioningEngine) -> None:
        self._engine = engine
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, environment: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(environment, threading.Lock())

    def is_busy(self, environment: str) -> bool:
        return self._lock_for(environment).locked()

    def apply(
        self,
        environment: str,
        approved_plan: EnginePlan,
        *,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        """对环境 apply 已批准的 plan

        Raises:
            PipelineStateError: plan 不属于该环境或 plan 本身带错误
            ConcurrentExecutionError: 该环境已有 apply 在执行
            PipelineCancelled: 调用引擎前流水线已被取消
        """
        if approved_plan.environment != environment:
            raise PipelineStateError(
                f"plan 属于环境 {approved_plan.environment}，不能用于 {environment}",
            )
        if not approved_plan.ok:
            raise PipelineStateError(f"环境 {environment} 的 plan 含错误，拒绝 apply")

        lock = self._lock_for(environment)
        if not lock.acquire(blocking=False):
            logger.warning("环境 %s 已有执行中的 apply，拒绝并发请求", environment)
            raise ConcurrentExecutionError(environment)

        try:
            if cancel is not None and cancel.is_set():
                raise PipelineCancelled(f"流水线已取消，跳过 {environment} apply")
            return self._run_apply(environment, approved_plan)
        finally:
            lock.release()

    def _run_apply(self, environment: str, plan: EnginePlan) -> ExecutionResult:
        started = utcnow()
        logger.info(
            "开始 apply: env=%s plan=%s", environment, plan.plan_file or "-",
            extra={"environment": environment},
        )
        try:
            result = self._engine.apply(environment, plan)
        except (ToolError, OSError) as e:
            logger.error("apply 引擎故障: env=%s: %s", environment, e)
            return ExecutionResult(
                operation=OperationKind.APPLY, outcome=Outcome.FAILURE,
                error=str(e), started_at=started, finished_at=utcnow(),
            )
        except Exception as e:
            logger.exception("apply 引擎异常: env=%s", environment)
            return ExecutionResult(
                operation=OperationKind.APPLY, outcome=Outcome.FAILURE,
                error=f"{type(e).__name__}: {e}", started_at=started, finished_at=utcnow(),
            )

        if result.error:
            outcome = Outcome.FAILURE
        elif not result.changes.has_changes:
            outcome = Outcome.NO_CHANGES
        else:
            outcome = Outcome.SUCCESS
        execution = ExecutionResult(
            operation=OperationKind.APPLY, outcome=outcome,
            changes=result.changes, error=result.error,
            started_at=started, finished_at=utcnow(),
        )
        log = logger.error if outcome == Outcome.FAILURE else logger.info
        log(
            "apply 完成: env=%s outcome=%s changes=%s",
            environment, outcome.value, result.changes.to_dict(),
            extra={"environment": environment},
        )
        return execution
