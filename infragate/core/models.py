"""核心数据模型

流水线所有领域实体集中定义，门禁 / 审批 / 执行 / 编排 / 报告统一从此处导入。
产出型结果（GateResult / ExecutionResult）为不可变对象。
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from infragate.core.exceptions import PipelineStateError, ValidationError


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _iso(ts: datetime | None) -> str:
    return ts.isoformat() if ts else ""


# =========================================================================
# 枚举
# =========================================================================


class TriggerKind(str, Enum):
    """触发类型"""
    REVIEW = "review"      # 变更评审：只跑门禁，不 apply
    PROMOTE = "promote"    # 变更合入：按链路顺序 apply


class RunStatus(str, Enum):
    """流水线状态"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class GateKind(str, Enum):
    """门禁类型"""
    SECURITY_SCAN = "security-scan"
    COST_ESTIMATE = "cost-estimate"
    DRY_RUN_PLAN = "dry-run-plan"


# 单环境内门禁固定顺序：成本估算依赖 plan 产物
GATE_ORDER: tuple[GateKind, ...] = (
    GateKind.SECURITY_SCAN,
    GateKind.DRY_RUN_PLAN,
    GateKind.COST_ESTIMATE,
)


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


class Fault(str, Enum):
    """失败归因：区分「被策略拦截」与「工具故障」"""
    NONE = "none"
    POLICY = "policy"
    INFRASTRUCTURE = "infrastructure"


class Severity(str, Enum):
    """发现项严重级别"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str | Severity) -> Severity:
        """宽松解析扫描器输出的级别字符串，无法识别时归为 UNKNOWN"""
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


_SEVERITY_RANK = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 4,
    Severity.MEDIUM: 3,
    Severity.LOW: 2,
    Severity.INFO: 1,
    Severity.UNKNOWN: 0,
}


class OperationKind(str, Enum):
    PLAN = "plan"
    APPLY = "apply"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NO_CHANGES = "no-changes"


class Decision(str, Enum):
    """审批决策：pending 是唯一非终态"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class EnvStatus(str, Enum):
    """单环境在本次流水线中的进展"""
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"        # review: 门禁全部通过
    APPLIED = "applied"      # promote: apply 成功 / 无变更
    BLOCKED = "blocked"      # 被门禁或审批拦截
    FAILED = "failed"        # apply 失败或致命故障
    SKIPPED = "skipped"      # 上游环境失败，未处理
    CANCELLED = "cancelled"


# =========================================================================
# 外部协作者值对象
# =========================================================================


@dataclass(frozen=True)
class ChangeSummary:
    """资源变更统计"""

    create: int = 0
    update: int = 0
    destroy: int = 0

    @property
    def total(self) -> int:
        return self.create + self.update + self.destroy

    @property
    def has_changes(self) -> bool:
        return self.total > 0

    def to_dict(self) -> dict[str, int]:
        return {"create": self.create, "update": self.update, "destroy": self.destroy}


@dataclass(frozen=True)
class Finding:
    """扫描器单条发现"""

    rule_id: str
    severity: Severity
    message: str = ""
    location: str = ""


@dataclass(frozen=True)
class EnginePlan:
    """供应引擎 plan 产物，apply 时原样使用，禁止重新 plan"""

    environment: str
    changes: ChangeSummary = field(default_factory=ChangeSummary)
    error: str = ""
    plan_file: str = ""      # 引擎二进制 plan 文件
    plan_json: str = ""      # plan 的 JSON 表示（供成本估算）
    working_dir: str = ""
    variables: dict[str, str] = field(default_factory=dict, repr=False)
    output: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True)
class EngineResult:
    """供应引擎 apply 结果"""

    changes: ChangeSummary = field(default_factory=ChangeSummary)
    error: str = ""
    output: str = ""


@dataclass(frozen=True)
class CostEstimate:
    """月度成本增量（最小货币单位，如分）"""

    monthly_delta_minor_units: int
    currency: str = "USD"
    breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "monthly_delta_minor_units": self.monthly_delta_minor_units,
            "currency": self.currency,
            "breakdown": dict(self.breakdown),
        }


# =========================================================================
# 门禁 / 执行 / 审批
# =========================================================================


@dataclass(frozen=True)
class GateResult:
    """单个门禁的评估结果"""

    kind: GateKind
    verdict: Verdict
    findings: dict[str, int] = field(default_factory=dict)  # severity -> count
    report: str = ""
    fault: Fault = Fault.NONE
    plan: EnginePlan | None = None
    estimate: CostEstimate | None = None
    produced_at: datetime = field(default_factory=utcnow)

    @property
    def passed(self) -> bool:
        return self.verdict != Verdict.FAIL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "verdict": self.verdict.value,
            "fault": self.fault.value,
            "findings": dict(self.findings),
            "report": self.report,
            "produced_at": _iso(self.produced_at),
        }
        if self.plan is not None:
            data["changes"] = self.plan.changes.to_dict()
        if self.estimate is not None:
            data["estimate"] = self.estimate.to_dict()
        return data


@dataclass(frozen=True)
class ExecutionResult:
    """供应引擎执行结果"""

    operation: OperationKind
    outcome: Outcome
    changes: ChangeSummary = field(default_factory=ChangeSummary)
    error: str = ""
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime = field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.NO_CHANGES)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "outcome": self.outcome.value,
            "changes": self.changes.to_dict(),
            "error": self.error,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }


@dataclass
class ApprovalRecord:
    """审批记录：仅由 ApprovalCoordinator 修改，pending → 终态恰好一次"""

    record_id: str
    environment: str
    required_reviewers: tuple[str, ...] = ()
    run_id: str = ""
    decision: Decision = Decision.PENDING
    decided_by: str = ""
    decided_at: datetime | None = None
    comment: str = ""
    requested_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.decision != Decision.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "run_id": self.run_id,
            "environment": self.environment,
            "required_reviewers": list(self.required_reviewers),
            "decision": self.decision.value,
            "decided_by": self.decided_by,
            "decided_at": _iso(self.decided_at),
            "comment": self.comment,
            "requested_at": _iso(self.requested_at),
            "expires_at": _iso(self.expires_at),
        }


# =========================================================================
# 环境 / 触发 / 运行配置
# =========================================================================


@dataclass
class EnvironmentSpec:
    """推广链路中的一个环境声明"""

    name: str
    protected: bool = False
    required_reviewers: list[str] = field(default_factory=list)
    working_dir: str = ""          # 该环境独立的引擎配置目录
    variables: dict[str, str] = field(default_factory=dict)
    approval_timeout_hours: float | None = None   # 覆盖全局审批超时
    description: str = ""


@dataclass(frozen=True)
class ConfigSnapshot:
    """门禁 / 引擎的输入快照：一个环境解析后的配置"""

    environment: str
    working_dir: str
    change_ref: str = ""
    run_id: str = ""
    variables: dict[str, str] = field(default_factory=dict)


@dataclass
class TriggerEvent:
    """触发事件 {kind, change_ref, environments}"""

    kind: TriggerKind
    change_ref: str = ""
    environments: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerEvent:
        kind = data.get("kind", "")
        try:
            trigger_kind = TriggerKind(kind)
        except ValueError:
            raise ValidationError(f"不支持的触发类型: {kind!r}") from None
        envs = data.get("environments") or []
        if not isinstance(envs, list):
            raise ValidationError("environments 必须为列表")
        return cls(
            kind=trigger_kind,
            change_ref=str(data.get("change_ref", "")),
            environments=[str(e) for e in envs],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "change_ref": self.change_ref,
            "environments": list(self.environments),
        }


@dataclass
class RunConfig:
    """单次流水线的显式配置，触发时传入，核心不读取进程级环境变量"""

    severity_threshold: Severity = Severity.HIGH
    approval_timeout_hours: float | None = 24.0
    max_parallel: int = 4
    variables: dict[str, str] = field(default_factory=dict)   # 凭据等注入变量


# =========================================================================
# 流水线
# =========================================================================


@dataclass
class EnvironmentPlan:
    """单环境在一次流水线中的全部产出，仅归属一个 PipelineRun"""

    name: str
    protected: bool = False
    gates: list[GateResult] = field(default_factory=list)
    execution: ExecutionResult | None = None
    approval: ApprovalRecord | None = None
    status: EnvStatus = EnvStatus.PENDING
    blocked_by: str = ""
    spec: EnvironmentSpec | None = None

    def gate(self, kind: GateKind) -> GateResult | None:
        """该类门禁最近一次结果"""
        for result in reversed(self.gates):
            if result.kind == kind:
                return result
        return None

    def failed_gates(self) -> list[GateResult]:
        return [g for g in self.gates if not g.passed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "protected": self.protected,
            "status": self.status.value,
            "blocked_by": self.blocked_by,
            "gates": [g.to_dict() for g in self.gates],
            "execution": self.execution.to_dict() if self.execution else None,
            "approval": self.approval.to_dict() if self.approval else None,
        }


_ALLOWED_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.RUNNING: {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED},
}


@dataclass
class PipelineRun:
    """一次触发事件对应的流水线运行，终态后不可变"""

    trigger: TriggerEvent
    environments: list[EnvironmentPlan] = field(default_factory=list)
    config: RunConfig = field(default_factory=RunConfig)
    run_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    status: RunStatus = RunStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def kind(self) -> TriggerKind:
        return self.trigger.kind

    def environment(self, name: str) -> EnvironmentPlan:
        for env in self.environments:
            if env.name == name:
                return env
        raise PipelineStateError(f"流水线 {self.run_id} 不包含环境: {name}")

    def transition(self, status: RunStatus) -> None:
        """状态机迁移，终态后拒绝任何迁移"""
        allowed = _ALLOWED_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise PipelineStateError(
                f"流水线 {self.run_id} 非法状态迁移: {self.status.value} -> {status.value}",
            )
        self.status = status
        if status == RunStatus.RUNNING:
            self.started_at = utcnow()
        elif status.terminal:
            self.finished_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.to_dict(),
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "environments": [e.to_dict() for e in self.environments],
        }
