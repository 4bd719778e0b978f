"""Infracost 成本估算器适配器

`infracost breakdown --path <plan.json> --format json --no-color`
金额为十进制字符串，统一换算为最小货币单位（四舍五入到分）。
"""

from __future__ import annotations

import json
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from infragate.core.exceptions import ToolError
from infragate.core.models import CostEstimate, EnginePlan
from infragate.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)


def to_minor_units(amount: str | float | int | None) -> int:
    """'12.345' -> 1235；None / 空串视为 0"""
    if amount in (None, ""):
        return 0
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ToolError("infracost", f"无效金额: {amount!r}") from None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_breakdown(data: dict[str, Any]) -> CostEstimate:
    breakdown: dict[str, int] = {}
    for project in data.get("projects") or []:
        diff = project.get("diff") or {}
        breakdown[project.get("name", "unknown")] = to_minor_units(diff.get("totalMonthlyCost"))
    return CostEstimate(
        monthly_delta_minor_units=to_minor_units(data.get("diffTotalMonthlyCost")),
        currency=data.get("currency") or "USD",
        breakdown=breakdown,
    )


class InfracostEstimator:
    """通过 infracost CLI 实现 CostEstimator 协议"""

    def __init__(
        self,
        binary: str = "infracost",
        *,
        executor: CommandExecutor | None = None,
        timeout: int = 600,
    ) -> None:
        self.binary = binary
        self.timeout = timeout
        self._executor = executor or get_executor()

    def estimate(self, plan: EnginePlan) -> CostEstimate:
        if not plan.plan_json:
            raise ToolError(self.binary, f"环境 {plan.environment} 的 plan 缺少 JSON 表示")
        r = self._executor.execute(
            [self.binary, "breakdown", "--path", plan.plan_json,
             "--format", "json", "--no-color"],
            cwd=plan.working_dir or ".", env=dict(plan.variables), timeout=self.timeout,
        )
        if not r.success:
            raise ToolError(self.binary, f"估算失败 (rc={r.returncode}): {r.stderr[:500]}")
        try:
            data = json.loads(r.stdout)
        except json.JSONDecodeError as e:
            raise ToolError(self.binary, f"输出无法解析: {e}") from None
        if not isinstance(data, dict):
            raise ToolError(self.binary, f"输出格式异常: 期望 JSON 对象，实际为 {type(data).__name__}")
        estimate = parse_breakdown(data)
        logger.info(
            "infracost 估算完成: env=%s delta=%d %s",
            plan.environment, estimate.monthly_delta_minor_units, estimate.currency,
        )
        return estimate
