"""TerraformEngine 单元测试（mock CommandExecutor）"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from infragate.core.exceptions import ToolError
from infragate.core.models import ConfigSnapshot, EnginePlan
from infragate.tools.terraform import (
    TerraformEngine,
    parse_apply_summary,
    summarize_resource_changes,
)
from infragate.utils.shell import CommandResult

PLAN_JSON = {
    "resource_changes": [
        {"address": "aws_s3_bucket.logs", "change": {"actions": ["create"]}},
        {"address": "aws_instance.web", "change": {"actions": ["update"]}},
        {"address": "aws_db.main", "change": {"actions": ["delete", "create"]}},
        {"address": "data.aws_ami.ubuntu", "change": {"actions": ["read"]}},
        {"address": "aws_iam_role.ci", "change": {"actions": ["no-op"]}},
    ],
}

SNAPSHOT = ConfigSnapshot(
    environment="prod", working_dir="infra/prod", run_id="r1",
    variables={"TF_VAR_region": "eu-west-1"},
)


def _executor(*results: CommandResult) -> MagicMock:
    ex = MagicMock()
    ex.execute.side_effect = list(results)
    return ex


class TestParsing:
    def test_summarize_resource_changes(self) -> None:
        c = summarize_resource_changes(PLAN_JSON)
        assert (c.create, c.update, c.destroy) == (2, 1, 1)

    def test_summarize_empty(self) -> None:
        assert not summarize_resource_changes({}).has_changes

    def test_parse_apply_summary(self) -> None:
        out = "Apply complete! Resources: 3 added, 1 changed, 2 destroyed.\n"
        c = parse_apply_summary(out)
        assert (c.create, c.update, c.destroy) == (3, 1, 2)

    def test_parse_apply_summary_missing(self) -> None:
        assert parse_apply_summary("nothing here").total == 0


class TestPlan:
    def test_plan_success(self, tmp_path: Path) -> None:
        ex = _executor(
            CommandResult(0, "initialized", ""),
            CommandResult(2, "Plan: 2 to add", ""),
            CommandResult(0, json.dumps(PLAN_JSON), ""),
        )
        engine = TerraformEngine(plan_dir=str(tmp_path), executor=ex)
        plan = engine.plan("prod", SNAPSHOT)

        assert plan.ok
        assert plan.changes.create == 2
        assert plan.plan_file.endswith("r1-prod.tfplan")
        assert Path(plan.plan_json).exists()
        assert plan.working_dir == "infra/prod"

        calls = ex.execute.call_args_list
        assert calls[0].args[0][:2] == ["terraform", "init"]
        assert "-detailed-exitcode" in calls[1].args[0]
        assert calls[1].kwargs["cwd"] == "infra/prod"
        env = calls[1].kwargs["env"]
        assert env["TF_VAR_region"] == "eu-west-1"
        assert env["TF_IN_AUTOMATION"] == "1"

    def test_plan_no_changes_exit_zero(self, tmp_path: Path) -> None:
        ex = _executor(
            CommandResult(0, "", ""),
            CommandResult(0, "No changes.", ""),
            CommandResult(0, json.dumps({"resource_changes": []}), ""),
        )
        plan = TerraformEngine(plan_dir=str(tmp_path), executor=ex).plan("prod", SNAPSHOT)
        assert plan.ok
        assert not plan.changes.has_changes

    def test_plan_error(self, tmp_path: Path) -> None:
        ex = _executor(
            CommandResult(0, "", ""),
            CommandResult(1, "", "Error: invalid provider credentials"),
        )
        plan = TerraformEngine(plan_dir=str(tmp_path), executor=ex).plan("prod", SNAPSHOT)
        assert not plan.ok
        assert "invalid provider credentials" in plan.error
        assert ex.execute.call_count == 2

    def test_init_error(self, tmp_path: Path) -> None:
        ex = _executor(CommandResult(1, "", "backend unreachable"))
        plan = TerraformEngine(plan_dir=str(tmp_path), executor=ex).plan("prod", SNAPSHOT)
        assert "init" in plan.error

    def test_show_output_unparseable(self, tmp_path: Path) -> None:
        ex = _executor(
            CommandResult(0, "", ""),
            CommandResult(2, "", ""),
            CommandResult(0, "not json", ""),
        )
        with pytest.raises(ToolError):
            TerraformEngine(plan_dir=str(tmp_path), executor=ex).plan("prod", SNAPSHOT)

    @pytest.mark.parametrize("stdout", ["null", "[]"])
    def test_show_output_not_object(self, tmp_path: Path, stdout: str) -> None:
        ex = _executor(
            CommandResult(0, "", ""),
            CommandResult(2, "", ""),
            CommandResult(0, stdout, ""),
        )
        with pytest.raises(ToolError, match="格式异常"):
            TerraformEngine(plan_dir=str(tmp_path), executor=ex).plan("prod", SNAPSHOT)


class TestApply:
    def test_apply_uses_plan_file(self) -> None:
        ex = _executor(CommandResult(0, "Resources: 1 added, 0 changed, 0 destroyed.", ""))
        plan = EnginePlan(environment="prod", plan_file="/plans/r1-prod.tfplan",
                          working_dir="infra/prod")
        result = TerraformEngine(executor=ex).apply("prod", plan)
        assert result.changes.create == 1
        args = ex.execute.call_args.args[0]
        assert args[1] == "apply"
        assert args[-1] == "/plans/r1-prod.tfplan"
        assert "plan" not in args

    def test_apply_failure(self) -> None:
        ex = _executor(CommandResult(1, "", "Error: quota exceeded"))
        plan = EnginePlan(environment="prod", plan_file="p.tfplan")
        result = TerraformEngine(executor=ex).apply("prod", plan)
        assert "quota exceeded" in result.error

    def test_apply_without_plan_file(self) -> None:
        with pytest.raises(ToolError):
            TerraformEngine(executor=MagicMock()).apply("prod", EnginePlan(environment="prod"))
