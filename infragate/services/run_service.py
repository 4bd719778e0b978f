"""执行服务：CLI 和 Web 共享的流水线运行逻辑

把「创建 run → 编排执行 → 汇总报告 → 写入历史」提取为单一入口。
CLI 同步执行；Web 在后台线程执行，立即返回 run_id。
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from infragate.core.exceptions import NotFoundError
from infragate.core.models import PipelineRun, RunConfig, TriggerEvent
from infragate.core.reporter import Report

if TYPE_CHECKING:
    from infragate.services.container import ServiceContainer

logger = logging.getLogger(__name__)


class RunService:
    """流水线运行服务"""

    def __init__(self, container: ServiceContainer) -> None:
        self.c = container
        self._threads: dict[str, threading.Thread] = {}
        self._persisted: list[str] = []
        self._lock = threading.Lock()

    def execute(
        self, event: TriggerEvent, run_config: RunConfig | None = None,
    ) -> tuple[PipelineRun, Report]:
        """同步执行并持久化，返回终态 run 与报告"""
        run = self.c.orchestrator.create_run(event, run_config)
        report = self._execute_and_persist(run)
        return run, report

    def submit(
        self, event: TriggerEvent, run_config: RunConfig | None = None,
    ) -> PipelineRun:
        """后台执行，立即返回 pending 状态的 run"""
        run = self.c.orchestrator.create_run(event, run_config)
        thread = threading.Thread(
            target=self._background, args=(run,),
            name=f"pipeline-{run.run_id}", daemon=True,
        )
        self._threads[run.run_id] = thread
        thread.start()
        return run

    def wait(self, run_id: str, timeout: float | None = None) -> bool:
        """等待后台 run 结束，返回是否已结束"""
        thread = self._threads.get(run_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def cancel(self, run_id: str) -> bool:
        return self.c.orchestrator.cancel(run_id)

    def report(self, run_id: str) -> Report:
        """进行中 / 本进程内的 run 实时汇总，否则从历史取回"""
        try:
            run = self.c.orchestrator.get(run_id)
        except NotFoundError:
            return self.c.history.get(run_id)
        return self.c.reporter.summarize(run)

    def _background(self, run: PipelineRun) -> None:
        try:
            self._execute_and_persist(run)
        except Exception:
            logger.exception("后台流水线异常: run=%s", run.run_id, extra={"run_id": run.run_id})
        finally:
            self._threads.pop(run.run_id, None)

    def _execute_and_persist(self, run: PipelineRun) -> Report:
        try:
            self.c.orchestrator.execute(run)
        except Exception:
            # 异常终止的 run 同样写入历史，供审计
            if run.status.terminal:
                self.c.history.record(self.c.reporter.summarize(run))
                self._retain(run.run_id)
            raise
        report = self.c.reporter.summarize(run)
        self.c.history.record(report)
        self._retain(run.run_id)
        return report

    def _retain(self, run_id: str) -> None:
        """已写入历史的 run 超出保留数时，释放其内存中的状态"""
        keep = self.c.config.retained_runs
        with self._lock:
            self._persisted.append(run_id)
            cut = max(len(self._persisted) - keep, 0)
            evicted, self._persisted = self._persisted[:cut], self._persisted[cut:]
        for old in evicted:
            self.c.orchestrator.forget(old)
            self.c.reporter.discard(old)
            self.c.approvals.purge_run(old)
        if evicted:
            logger.debug("释放已归档的 run: %s", evicted)
