"""门禁评估器

对单个环境执行一个校验步骤（安全扫描 / 成本估算 / 试运行 plan），
把工具输出归约为 pass / fail / warn 加结构化报告。

策略:
  - security-scan: 任一发现 >= 阈值级别（默认 high）即 fail；仅有低级别发现为 warn
  - cost-estimate: 从不因成本本身失败，估算器出错时记为基础设施故障
  - dry-run-plan:  引擎计算 plan 出错即 fail；有待变更的干净 plan 为 pass

评估器不修改任何目标基础设施；工具故障收敛为 fault=infrastructure 的结果，不向上抛出。
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Callable

from infragate.core.exceptions import PipelineStateError, ToolError, ValidationError
from infragate.core.models import (
    ConfigSnapshot,
    EnginePlan,
    Fault,
    Finding,
    GateKind,
    GateResult,
    Severity,
    Verdict,
)

if TYPE_CHECKING:
    from infragate.core.protocols import CostEstimator, ProvisioningEngine, Scanner

logger = logging.getLogger(__name__)

_GateHandler = Callable[[str, ConfigSnapshot, "EnginePlan | None", Severity], GateResult]


def format_minor_units(amount: int, currency: str = "") -> str:
    """最小货币单位格式化为带符号金额，如 1234 -> +12.34"""
    sign = "-" if amount < 0 else "+"
    whole, cents = divmod(abs(amount), 100)
    text = f"{sign}{whole}.{cents:02d}"
    return f"{text} {currency}" if currency else text


def format_changes(plan: EnginePlan) -> str:
    c = plan.changes
    if not c.has_changes:
        return "无变更"
    return f"+{c.create} ~{c.update} -{c.destroy}"


class GateEvaluator:
    """门禁评估器：按门禁类型分派到对应工具"""

    def __init__(
        self,
        engine: ProvisioningEngine,
        scanner: Scanner,
        estimator: CostEstimator,
    ) -> None:
        self._engine = engine
        self._scanner = scanner
        self._estimator = estimator
        self._handlers: dict[GateKind, _GateHandler] = {
            GateKind.SECURITY_SCAN: self._security_scan,
            GateKind.COST_ESTIMATE: self._cost_estimate,
            GateKind.DRY_RUN_PLAN: self._dry_run_plan,
        }

    def evaluate(
        self,
        environment: str,
        kind: GateKind,
        snapshot: ConfigSnapshot,
        *,
        plan: EnginePlan | None = None,
        threshold: Severity = Severity.HIGH,
    ) -> GateResult:
        """对环境执行一个门禁，返回不可变的 GateResult"""
        handler = self._handlers.get(kind)
        if handler is None:
            raise ValidationError(f"不支持的门禁类型: {kind}")

        try:
            result = handler(environment, snapshot, plan, threshold)
        except ToolError as e:
            logger.error("门禁工具故障: env=%s gate=%s: %s", environment, kind.value, e)
            return GateResult(
                kind=kind, verdict=Verdict.FAIL, fault=Fault.INFRASTRUCTURE,
                report=f"工具故障: {e}",
            )
        except OSError as e:
            logger.exception("门禁执行异常: env=%s gate=%s", environment, kind.value)
            return GateResult(
                kind=kind, verdict=Verdict.FAIL, fault=Fault.INFRASTRUCTURE,
                report=f"工具故障: {e}",
            )
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            # 工具返回了无法识别的结构
            logger.exception("门禁工具输出异常: env=%s gate=%s", environment, kind.value)
            return GateResult(
                kind=kind, verdict=Verdict.FAIL, fault=Fault.INFRASTRUCTURE,
                report=f"工具输出异常: {type(e).__name__}: {e}",
            )

        logger.info(
            "门禁完成: env=%s gate=%s verdict=%s",
            environment, kind.value, result.verdict.value,
            extra={"environment": environment, "gate": kind.value},
        )
        return result

    # ---- security-scan ----

    def _security_scan(
        self, environment: str, snapshot: ConfigSnapshot,
        plan: EnginePlan | None, threshold: Severity,
    ) -> GateResult:
        findings = self._scanner.scan(snapshot)
        counts = Counter(f.severity.value for f in findings)
        blocking = [f for f in findings if f.severity.rank >= threshold.rank]

        if blocking:
            verdict, fault = Verdict.FAIL, Fault.POLICY
        elif findings:
            verdict, fault = Verdict.WARN, Fault.NONE
        else:
            verdict, fault = Verdict.PASS, Fault.NONE

        lines = [
            f"扫描发现 {len(findings)} 项，阈值 {threshold.value}，"
            f"阻断 {len(blocking)} 项",
        ]
        ordered = sorted(findings, key=lambda f: f.severity.rank, reverse=True)
        lines.extend(_format_finding(f) for f in ordered)
        return GateResult(
            kind=GateKind.SECURITY_SCAN, verdict=verdict, fault=fault,
            findings=dict(counts), report="\n".join(lines),
        )

    # ---- dry-run-plan ----

    def _dry_run_plan(
        self, environment: str, snapshot: ConfigSnapshot,
        plan: EnginePlan | None, threshold: Severity,
    ) -> GateResult:
        produced = self._engine.plan(environment, snapshot)
        if not produced.ok:
            return GateResult(
                kind=GateKind.DRY_RUN_PLAN, verdict=Verdict.FAIL,
                fault=Fault.INFRASTRUCTURE, plan=produced,
                report=f"plan 计算失败: {produced.error}",
            )
        return GateResult(
            kind=GateKind.DRY_RUN_PLAN, verdict=Verdict.PASS, plan=produced,
            report=f"计划变更: {format_changes(produced)}",
        )

    # ---- cost-estimate ----

    def _cost_estimate(
        self, environment: str, snapshot: ConfigSnapshot,
        plan: EnginePlan | None, threshold: Severity,
    ) -> GateResult:
        if plan is None or not plan.ok:
            raise PipelineStateError(f"环境 {environment} 无可用 plan，无法估算成本")
        estimate = self._estimator.estimate(plan)
        lines = [
            "月度成本变化: "
            + format_minor_units(estimate.monthly_delta_minor_units, estimate.currency),
        ]
        for name, delta in sorted(estimate.breakdown.items()):
            lines.append(f"  {name}: {format_minor_units(delta)}")
        return GateResult(
            kind=GateKind.COST_ESTIMATE, verdict=Verdict.PASS,
            estimate=estimate, report="\n".join(lines),
        )


def _format_finding(finding: Finding) -> str:
    where = f" ({finding.location})" if finding.location else ""
    return f"  [{finding.severity.value.upper()}] {finding.rule_id}: {finding.message}{where}"
