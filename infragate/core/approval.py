"""审批协调器

受保护环境在 apply 前挂起，直到授权审批人记录决策。

状态机:
  pending ──record_decision──> approved | rejected
  pending ──expiry timer─────> expired
  pending ──withdraw─────────> rejected (系统决策，流水线取消时使用)

approved / rejected / expired 为互斥终态；对终态记录的再次决策返回
AlreadyDecidedError，不修改记录。

等待决策是条件变量上的挂起点：决策、超时定时器、撤回三者都会唤醒等待方，
无轮询。
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Protocol

from infragate.core.exceptions import (
    AlreadyDecidedError,
    NotFoundError,
    UnauthorizedReviewerError,
    ValidationError,
)
from infragate.core.models import ApprovalRecord, Decision, utcnow

if TYPE_CHECKING:
    from infragate.core.protocols import ApprovalNotifier

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "infragate"


class _Timer(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], _Timer]


def _thread_timer(interval: float, callback: Callable[[], None]) -> _Timer:
    return threading.Timer(interval, callback)


class ApprovalCoordinator:
    """审批协调器（线程安全）"""

    def __init__(
        self,
        notifier: ApprovalNotifier | None = None,
        *,
        timer_factory: TimerFactory = _thread_timer,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._notifier = notifier
        self._timer_factory = timer_factory
        self._clock = clock
        self._records: dict[str, ApprovalRecord] = {}
        self._timers: dict[str, _Timer] = {}
        self._cond = threading.Condition()

    def set_notifier(self, notifier: ApprovalNotifier | None) -> None:
        self._notifier = notifier

    def request_approval(
        self,
        environment: str,
        required_reviewers: list[str] | tuple[str, ...] = (),
        *,
        run_id: str = "",
        timeout_hours: float | None = None,
    ) -> ApprovalRecord:
        """创建 pending 审批记录并通知审批人"""
        if timeout_hours is not None and timeout_hours <= 0:
            raise ValidationError(f"审批超时必须为正数: {timeout_hours}")
        now = self._clock()
        record = ApprovalRecord(
            record_id=str(uuid.uuid4())[:12],
            environment=environment,
            required_reviewers=tuple(required_reviewers),
            run_id=run_id,
            requested_at=now,
            expires_at=(
                now + timedelta(hours=timeout_hours) if timeout_hours is not None else None
            ),
        )
        with self._cond:
            self._records[record.record_id] = record
        logger.info(
            "审批已请求: id=%s env=%s reviewers=%s expires_at=%s",
            record.record_id, environment, list(record.required_reviewers),
            record.expires_at.isoformat() if record.expires_at else "never",
            extra={"run_id": run_id, "environment": environment},
        )

        if timeout_hours is not None:
            timer = self._timer_factory(
                timeout_hours * 3600, lambda: self.expire(record.record_id),
            )
            timer.daemon = True
            with self._cond:
                self._timers[record.record_id] = timer
            timer.start()

        if self._notifier is not None:
            self._notifier.notify(record)
        return record

    def record_decision(
        self, record_id: str, actor: str, decision: Decision | str,
        *, comment: str = "",
    ) -> ApprovalRecord:
        """记录审批决策（pending → approved | rejected，恰好一次）"""
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError(f"无效的审批决策: {decision}") from None
        if decision not in (Decision.APPROVED, Decision.REJECTED):
            raise ValidationError(f"审批人只能决策 approved / rejected: {decision.value}")
        if not actor:
            raise ValidationError("需要提供决策人 actor")

        with self._cond:
            record = self._get_locked(record_id)
            if record.is_terminal:
                raise AlreadyDecidedError(record_id, record.decision.value)
            if record.required_reviewers and actor not in record.required_reviewers:
                raise UnauthorizedReviewerError(
                    f"{actor} 不在环境 {record.environment} 的审批人名单内",
                )
            self._finalize_locked(record, decision, actor, comment)

        logger.info(
            "审批已决策: id=%s env=%s decision=%s by=%s",
            record_id, record.environment, decision.value, actor,
            extra={"run_id": record.run_id, "environment": record.environment},
        )
        return record

    def expire(self, record_id: str) -> bool:
        """超时定时器回调：仍为 pending 时迁移到 expired"""
        with self._cond:
            record = self._records.get(record_id)
            if record is None or record.is_terminal:
                return False
            self._finalize_locked(record, Decision.EXPIRED, SYSTEM_ACTOR, "审批超时")
        logger.warning(
            "审批已超时: id=%s env=%s", record_id, record.environment,
            extra={"run_id": record.run_id, "environment": record.environment},
        )
        return True

    def withdraw(self, record_id: str, reason: str = "流水线已取消") -> bool:
        """撤回 pending 审批（系统拒绝），保证记录不停留在非终态"""
        with self._cond:
            record = self._records.get(record_id)
            if record is None or record.is_terminal:
                return False
            self._finalize_locked(record, Decision.REJECTED, SYSTEM_ACTOR, reason)
        logger.info("审批已撤回: id=%s reason=%s", record_id, reason)
        return True

    def wait(
        self, record_id: str, cancel: threading.Event | None = None,
    ) -> ApprovalRecord:
        """挂起直到记录进入终态或流水线被取消

        取消方需同时调用 withdraw() 唤醒等待方；返回时记录可能仍为 pending
        仅当 cancel 已置位且尚未撤回。
        """
        with self._cond:
            record = self._get_locked(record_id)
            while not record.is_terminal:
                if cancel is not None and cancel.is_set():
                    break
                self._cond.wait()
            return record

    def wake_all(self) -> None:
        """唤醒所有等待方（取消信号已置位后调用）"""
        with self._cond:
            self._cond.notify_all()

    def get(self, record_id: str) -> ApprovalRecord:
        with self._cond:
            return self._get_locked(record_id)

    def purge_run(self, run_id: str) -> int:
        """移除某个 run 的已结束审批记录，返回移除数"""
        with self._cond:
            stale = [
                rid for rid, r in self._records.items()
                if r.run_id == run_id and r.is_terminal
            ]
            for rid in stale:
                del self._records[rid]
                self._timers.pop(rid, None)
        return len(stale)

    def list(self, *, pending_only: bool = False, run_id: str = "") -> list[ApprovalRecord]:
        with self._cond:
            records = list(self._records.values())
        if pending_only:
            records = [r for r in records if not r.is_terminal]
        if run_id:
            records = [r for r in records if r.run_id == run_id]
        return sorted(records, key=lambda r: r.requested_at)

    # ---- 内部 ----

    def _get_locked(self, record_id: str) -> ApprovalRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"审批记录不存在: {record_id}")
        return record

    def _finalize_locked(
        self, record: ApprovalRecord, decision: Decision, actor: str, comment: str,
    ) -> None:
        record.decision = decision
        record.decided_by = actor
        record.decided_at = self._clock()
        record.comment = comment
        timer = self._timers.pop(record.record_id, None)
        if timer is not None:
            timer.cancel()
        self._cond.notify_all()
