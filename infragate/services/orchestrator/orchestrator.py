"""流水线编排器：每个 PipelineRun 的状态机

  pending → running → succeeded | failed | cancelled

review:  所有环境并行跑门禁（环境内门禁顺序执行），只报告不 apply
promote: 严格按链路顺序逐个环境推进，任一环境未完成即停止，下游标记 skipped

取消在每个挂起点可见（门禁间隙、审批等待、apply 前）；已 apply 的环境保持原样，不回滚。
无隐式重试：重试即调用方重新触发整条流水线。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from infragate.core.exceptions import NotFoundError, PipelineCancelled, PipelineStateError
from infragate.core.models import (
    EnvironmentPlan,
    EnvStatus,
    PipelineRun,
    RunConfig,
    RunStatus,
    TriggerEvent,
    TriggerKind,
)
from infragate.services.orchestrator.steps import PipelineSteps

if TYPE_CHECKING:
    from infragate.core.protocols import RunObserver
    from infragate.services.container import ServiceContainer

logger = logging.getLogger(__name__)

_UNRESOLVED = (EnvStatus.PENDING, EnvStatus.RUNNING)


class PipelineOrchestrator:
    """流水线编排器"""

    def __init__(
        self,
        container: ServiceContainer | None = None,
        observers: list[RunObserver] | None = None,
    ) -> None:
        if container is None:
            from infragate.services.container import ServiceContainer
            container = ServiceContainer()
        self.c = container
        self._observers: list[RunObserver] = [self.c.reporter, *(observers or [])]
        self.steps = PipelineSteps(self.c, self._emit)
        self._runs: dict[str, PipelineRun] = {}
        self._cancels: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def _emit(
        self, run: PipelineRun, event: str, *,
        environment: str = "", detail: str = "",
    ) -> None:
        for observer in self._observers:
            observer.on_transition(run, event, environment=environment, detail=detail)

    # ---- 对外接口 ----

    def create_run(
        self, event: TriggerEvent, run_config: RunConfig | None = None,
    ) -> PipelineRun:
        """接收触发事件，解析环境链路，创建 pending 状态的 PipelineRun"""
        specs = self.c.environments.resolve(event.environments)
        if not specs:
            raise PipelineStateError("推广链路为空，没有可处理的环境")
        run = PipelineRun(
            trigger=event,
            environments=[
                EnvironmentPlan(name=s.name, protected=s.protected, spec=s)
                for s in specs
            ],
            config=run_config or self.c.config.run_config(),
        )
        with self._lock:
            self._runs[run.run_id] = run
            self._cancels[run.run_id] = threading.Event()
        logger.info(
            "流水线已创建: run=%s kind=%s change=%s envs=%s",
            run.run_id, event.kind.value, event.change_ref,
            [e.name for e in run.environments],
            extra={"run_id": run.run_id},
        )
        self._emit(run, "run_created", detail=event.kind.value)
        return run

    def run(
        self, event: TriggerEvent, run_config: RunConfig | None = None,
    ) -> PipelineRun:
        """同步执行一次完整流水线"""
        return self.execute(self.create_run(event, run_config))

    def execute(self, run: PipelineRun) -> PipelineRun:
        """驱动 pending 状态的 run 直到终态"""
        cancel = self._cancel_event(run.run_id)
        if cancel.is_set():
            self._finish(run, RunStatus.CANCELLED)
            return run

        run.transition(RunStatus.RUNNING)
        self._emit(run, "run_started")
        status = RunStatus.FAILED
        try:
            if run.kind == TriggerKind.REVIEW:
                status = self._execute_review(run, cancel)
            else:
                status = self._execute_promote(run, cancel)
        except PipelineCancelled as e:
            logger.warning("%s", e, extra={"run_id": run.run_id})
            status = RunStatus.CANCELLED
        except PipelineStateError as e:
            logger.error("流水线致命故障，终止: %s", e, extra={"run_id": run.run_id})
            status = RunStatus.FAILED
        finally:
            self._withdraw_pending(run)
            self._finish(run, status)
        return run

    def cancel(self, run_id: str) -> bool:
        """外部取消流水线，返回是否对一个未结束的 run 生效"""
        with self._lock:
            run = self._runs.get(run_id)
            cancel = self._cancels.get(run_id)
        if run is None:
            raise NotFoundError(f"流水线不存在: {run_id}")
        if cancel is None or run.status.terminal:
            return False
        cancel.set()
        self._withdraw_pending(run)
        self.c.approvals.wake_all()
        logger.info("流水线取消请求已受理: run=%s", run_id, extra={"run_id": run_id})
        return True

    def get(self, run_id: str) -> PipelineRun:
        with self._lock:
            run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"流水线不存在: {run_id}")
        return run

    def list_runs(self) -> list[PipelineRun]:
        with self._lock:
            return sorted(self._runs.values(), key=lambda r: r.created_at, reverse=True)

    def forget(self, run_id: str) -> bool:
        """从内存移除已结束的 run，未结束的 run 保留"""
        with self._lock:
            run = self._runs.get(run_id)
            if run is None or not run.status.terminal:
                return False
            del self._runs[run_id]
        return True

    # ---- 触发类型实现 ----

    def _execute_review(self, run: PipelineRun, cancel: threading.Event) -> RunStatus:
        workers = max(1, min(run.config.max_parallel, len(run.environments)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gate") as pool:
            futures = [
                pool.submit(self.steps.review_environment, run, env, cancel)
                for env in run.environments
            ]
            # 先等全部环境结束，再统一抛出取消 / 致命故障
            errors: list[BaseException] = []
            results: list[bool] = []
            for env, future in zip(run.environments, futures):
                try:
                    results.append(future.result())
                except (PipelineCancelled, PipelineStateError) as e:
                    errors.append(e)
                    results.append(False)
                logger.info(
                    "环境评审完成: %s -> %s", env.name, env.status.value,
                    extra={"run_id": run.run_id, "environment": env.name},
                )
        for err in errors:
            if isinstance(err, PipelineCancelled):
                raise err
        if errors:
            raise errors[0]
        return RunStatus.SUCCEEDED if all(results) else RunStatus.FAILED

    def _execute_promote(self, run: PipelineRun, cancel: threading.Event) -> RunStatus:
        for index, env in enumerate(run.environments):
            if cancel.is_set():
                raise PipelineCancelled(f"流水线已取消（{env.name} 之前）")
            if not self.steps.promote_environment(run, env, cancel):
                for downstream in run.environments[index + 1:]:
                    downstream.status = EnvStatus.SKIPPED
                    downstream.blocked_by = f"上游环境 {env.name} 未完成: {env.blocked_by}"
                    self._emit(run, "environment_skipped", environment=downstream.name)
                return RunStatus.FAILED
        return RunStatus.SUCCEEDED

    # ---- 内部 ----

    def _cancel_event(self, run_id: str) -> threading.Event:
        with self._lock:
            cancel = self._cancels.get(run_id)
        if cancel is None:
            raise PipelineStateError(f"流水线 {run_id} 未通过 create_run 创建或已结束")
        return cancel

    def _withdraw_pending(self, run: PipelineRun) -> None:
        for record in self.c.approvals.list(pending_only=True, run_id=run.run_id):
            self.c.approvals.withdraw(record.record_id)

    def _finish(self, run: PipelineRun, status: RunStatus) -> None:
        if status == RunStatus.CANCELLED:
            for env in run.environments:
                if env.status in _UNRESOLVED:
                    env.status = EnvStatus.CANCELLED
                    env.blocked_by = "流水线已取消"
        else:
            for env in run.environments:
                if env.status in _UNRESOLVED:
                    env.status = EnvStatus.FAILED
                    env.blocked_by = env.blocked_by or "流水线异常终止"
        run.transition(status)
        with self._lock:
            self._cancels.pop(run.run_id, None)
        logger.info(
            "流水线结束: run=%s status=%s", run.run_id, status.value,
            extra={"run_id": run.run_id},
        )
        self._emit(run, "run_finished", detail=status.value)
