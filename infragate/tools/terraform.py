"""Terraform 供应引擎适配器

plan:  terraform init → plan -detailed-exitcode -out=<planfile> → show -json <planfile>
apply: terraform apply <planfile>（直接应用已审阅的 plan 文件，不重新计算）

每个环境使用自己的 working_dir 与变量；plan 文件按 run_id + 环境名隔离。
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from infragate.core.exceptions import ToolError
from infragate.core.models import ChangeSummary, ConfigSnapshot, EnginePlan, EngineResult
from infragate.utils.shell import CommandExecutor, CommandResult, get_executor
from infragate.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

_APPLY_SUMMARY_RE = re.compile(
    r"Resources:\s+(\d+)\s+added,\s+(\d+)\s+changed,\s+(\d+)\s+destroyed",
)
_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_\-]")

# 传给 terraform 的固定环境变量，禁止交互
_AUTOMATION_ENV = {"TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}


def _tail(text: str, limit: int = 2000) -> str:
    text = text.strip()
    return text if len(text) <= limit else "..." + text[-limit:]


def summarize_resource_changes(plan_data: dict[str, Any]) -> ChangeSummary:
    """统计 `terraform show -json` 的 resource_changes

    replace（delete+create）同时计入 create 与 destroy；no-op / read 不计。
    """
    create = update = destroy = 0
    for rc in plan_data.get("resource_changes") or []:
        actions = set((rc.get("change") or {}).get("actions") or [])
        if "create" in actions:
            create += 1
        if "delete" in actions:
            destroy += 1
        if "update" in actions:
            update += 1
    return ChangeSummary(create=create, update=update, destroy=destroy)


def parse_apply_summary(output: str) -> ChangeSummary:
    """解析 `Apply complete! Resources: N added, N changed, N destroyed.`"""
    m = _APPLY_SUMMARY_RE.search(output)
    if not m:
        return ChangeSummary()
    return ChangeSummary(create=int(m.group(1)), update=int(m.group(2)), destroy=int(m.group(3)))


class TerraformEngine:
    """通过 terraform CLI 实现 ProvisioningEngine 协议"""

    def __init__(
        self,
        binary: str = "terraform",
        plan_dir: str = "data/plans",
        *,
        executor: CommandExecutor | None = None,
        timeout: int = 1800,
    ) -> None:
        self.binary = binary
        self.plan_dir = Path(plan_dir)
        self.timeout = timeout
        self._executor = executor or get_executor()

    def _run(
        self, args: list[str], cwd: str, variables: dict[str, str],
    ) -> CommandResult:
        return self._executor.execute(
            [self.binary, *args], cwd=cwd,
            env={**variables, **_AUTOMATION_ENV}, timeout=self.timeout,
        )

    def _plan_file(self, environment: str, run_id: str) -> Path:
        prefix = _SAFE_NAME_RE.sub("_", run_id or "adhoc")
        name = _SAFE_NAME_RE.sub("_", environment)
        return (self.plan_dir / f"{prefix}-{name}.tfplan").resolve()

    def plan(self, environment: str, snapshot: ConfigSnapshot) -> EnginePlan:
        cwd = snapshot.working_dir
        variables = dict(snapshot.variables)
        plan_file = self._plan_file(environment, snapshot.run_id)
        plan_file.parent.mkdir(parents=True, exist_ok=True)

        def failed(stage: str, r: CommandResult) -> EnginePlan:
            return EnginePlan(
                environment=environment, working_dir=cwd, variables=variables,
                error=f"terraform {stage} 失败 (rc={r.returncode}): {_tail(r.stderr or r.stdout)}",
            )

        init = self._run(["init", "-input=false", "-no-color"], cwd, variables)
        if not init.success:
            return failed("init", init)

        # -detailed-exitcode: 0 无变更, 1 出错, 2 有变更
        plan = self._run(
            ["plan", "-input=false", "-no-color", "-detailed-exitcode", f"-out={plan_file}"],
            cwd, variables,
        )
        if plan.returncode not in (0, 2):
            return failed("plan", plan)

        show = self._run(["show", "-json", str(plan_file)], cwd, variables)
        if not show.success:
            return failed("show", show)
        try:
            plan_data = json.loads(show.stdout)
        except json.JSONDecodeError as e:
            raise ToolError(self.binary, f"show -json 输出无法解析: {e}") from None
        if not isinstance(plan_data, dict):
            raise ToolError(
                self.binary, f"show -json 输出格式异常: 期望 JSON 对象，实际为 {type(plan_data).__name__}",
            )

        plan_json = plan_file.with_suffix(".json")
        atomic_write(plan_json, show.stdout)
        changes = summarize_resource_changes(plan_data)
        logger.info(
            "terraform plan 完成: env=%s changes=%s file=%s",
            environment, changes.to_dict(), plan_file,
        )
        return EnginePlan(
            environment=environment, changes=changes,
            plan_file=str(plan_file), plan_json=str(plan_json),
            working_dir=cwd, variables=variables,
            output=_tail(plan.stdout),
        )

    def apply(self, environment: str, plan: EnginePlan) -> EngineResult:
        if not plan.plan_file:
            raise ToolError(self.binary, f"环境 {environment} 的 plan 缺少 plan 文件")
        r = self._run(
            ["apply", "-input=false", "-no-color", plan.plan_file],
            plan.working_dir or ".", plan.variables,
        )
        if not r.success:
            return EngineResult(
                error=f"terraform apply 失败 (rc={r.returncode}): {_tail(r.stderr or r.stdout)}",
                output=_tail(r.stdout),
            )
        return EngineResult(changes=parse_apply_summary(r.stdout), output=_tail(r.stdout))
