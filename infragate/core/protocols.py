"""领域协议定义

流水线核心只依赖这些 Protocol，不依赖 terraform / tfsec / infracost 的具体适配器。
使用 typing.Protocol 而非 ABC，测试替身无需继承即可满足协议。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from infragate.core.models import (
        ApprovalRecord,
        ConfigSnapshot,
        CostEstimate,
        EnginePlan,
        EngineResult,
        Finding,
        PipelineRun,
    )


# =========================================================================
# 外部工具协议
# =========================================================================

class ProvisioningEngine(Protocol):
    """声明式供应引擎（plan / apply 两个操作）

    两个操作对同一输入重复调用是安全的，但编排器从不自动重试。
    可能很慢、可能失败：失败既可以通过 error 字段返回，也可以抛 ToolError。
    """

    def plan(self, environment: str, snapshot: ConfigSnapshot) -> EnginePlan:
        ...

    def apply(self, environment: str, plan: EnginePlan) -> EngineResult:
        ...


class Scanner(Protocol):
    """静态安全扫描器"""

    def scan(self, snapshot: ConfigSnapshot) -> list[Finding]:
        ...


class CostEstimator(Protocol):
    """成本估算器"""

    def estimate(self, plan: EnginePlan) -> CostEstimate:
        ...


# =========================================================================
# 审批通道 / 观察者
# =========================================================================

class ApprovalNotifier(Protocol):
    """审批通知通道，仅负责送达；决策回流只经 ApprovalCoordinator.record_decision"""

    def notify(self, record: ApprovalRecord) -> None:
        ...


class RunObserver(Protocol):
    """流水线状态迁移观察者"""

    def on_transition(
        self, run: PipelineRun, event: str, *,
        environment: str = "", detail: str = "",
    ) -> None:
        ...
