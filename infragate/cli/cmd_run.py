"""CLI：流水线执行命令

退出码: succeeded=0, failed=1, cancelled=2，CI runner 据此判定通过与否。
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from infragate.cli import _parse_kv_pairs, _svc
from infragate.core.exceptions import (
    AlreadyDecidedError,
    InfraGateError,
    UnauthorizedReviewerError,
)
from infragate.core.models import (
    ApprovalRecord,
    Decision,
    RunStatus,
    Severity,
    TriggerEvent,
    TriggerKind,
)
from infragate.core.reporter import available_formats, get_formatter

EXIT_CODES = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.FAILED: 1,
    RunStatus.CANCELLED: 2,
}

_THRESHOLDS = [s.value for s in Severity if s != Severity.UNKNOWN]


def register(group: click.Group) -> None:
    group.add_command(run)


class ConsoleApprovalNotifier:
    """在控制台就地处理审批：提示审批人并回写决定"""

    def __init__(self, coordinator) -> None:  # type: ignore[no-untyped-def]
        self.coordinator = coordinator

    def notify(self, record: ApprovalRecord) -> None:
        click.echo(f"\n环境 {record.environment} 需要审批 (id={record.record_id})")
        if record.required_reviewers:
            click.echo(f"审批人: {', '.join(record.required_reviewers)}")
        default_actor = record.required_reviewers[0] if record.required_reviewers else None
        while True:
            actor = click.prompt("审批人", default=default_actor)
            approved = click.confirm(f"批准 apply 到 {record.environment}?", default=False)
            decision = Decision.APPROVED if approved else Decision.REJECTED
            try:
                self.coordinator.record_decision(record.record_id, actor, decision)
                return
            except UnauthorizedReviewerError as e:
                click.echo(f"拒绝: {e}", err=True)
            except AlreadyDecidedError as e:
                click.echo(f"审批已结束: {e}", err=True)
                return


@click.command()
@click.argument("kind", type=click.Choice([k.value for k in TriggerKind]))
@click.option("--change-ref", "-r", default="", help="变更引用（commit / PR 号）")
@click.option("--env", "-e", "envs", multiple=True, help="只处理指定环境（可多次，默认整条链路）")
@click.option("--format", "-f", "fmt", default="text",
              type=click.Choice(available_formats()), help="报告格式")
@click.option("--output", "-o", default="",
              help="报告写入文件（无扩展名时按格式补全，默认输出到 stdout）")
@click.option("--threshold", default=None, type=click.Choice(_THRESHOLDS),
              help="安全扫描阻断阈值")
@click.option("--approval-timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="审批超时（小时，须为正数）")
@click.option("--var", multiple=True, help="注入变量 key=value（可多次）")
@click.option("--interactive/--no-interactive", default=False,
              help="在控制台处理受保护环境的审批")
def run(
    kind: str, change_ref: str, envs: tuple[str, ...], fmt: str, output: str,
    threshold: str | None, approval_timeout: float | None,
    var: tuple[str, ...], interactive: bool,
) -> None:
    """触发一次流水线（review | promote）"""
    container = _svc()
    if interactive:
        container.approvals.set_notifier(ConsoleApprovalNotifier(container.approvals))

    try:
        run_config = container.config.run_config(
            severity_threshold=Severity(threshold) if threshold else None,
            approval_timeout_hours=approval_timeout,
        )
        run_config.variables.update(_parse_kv_pairs(var))
        event = TriggerEvent(
            kind=TriggerKind(kind), change_ref=change_ref, environments=list(envs),
        )
        pipeline_run, report = container.runs.execute(event, run_config)
    except InfraGateError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e

    formatter = get_formatter(fmt)
    content = formatter.format(report)
    if output:
        path = Path(output)
        if not path.suffix:
            path = path.with_suffix(f".{formatter.extension()}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        click.echo(f"报告已写入: {path}")
    else:
        click.echo(content)
    sys.exit(EXIT_CODES[pipeline_run.status])
