"""CLI：流水线历史与报告命令"""

from __future__ import annotations

import click

from infragate.cli import _svc
from infragate.core.exceptions import NotFoundError
from infragate.core.models import RunStatus, TriggerKind
from infragate.core.reporter import available_formats, render


def register(group: click.Group) -> None:
    group.add_command(history_list)
    group.add_command(report)


@click.command(name="history")
@click.option("--status", default=None, type=click.Choice([s.value for s in RunStatus]),
              help="按状态过滤")
@click.option("--kind", default=None, type=click.Choice([k.value for k in TriggerKind]),
              help="按触发类型过滤")
@click.option("--env", default=None, help="按环境过滤")
@click.option("--limit", default=20, help="最大记录数")
def history_list(status: str | None, kind: str | None, env: str | None, limit: int) -> None:
    """查看流水线历史"""
    records = _svc().history.query(status=status, kind=kind, environment=env, limit=limit)
    if not records:
        click.echo("暂无历史记录。")
        return
    for r in records:
        names = ",".join(e.get("name", "") for e in r.get("environments", []))
        click.echo(
            f"  {r.get('run_id', '')}  {r.get('kind', ''):8s} {r.get('status', ''):10s} "
            f"{r.get('finished_at', '')}  ref={r.get('change_ref', '') or '-'}  [{names}]"
        )


@click.command()
@click.argument("run_id")
@click.option("--format", "-f", "fmt", default="text",
              type=click.Choice(available_formats()), help="报告格式")
def report(run_id: str, fmt: str) -> None:
    """输出指定流水线的报告"""
    try:
        rpt = _svc().runs.report(run_id)
    except NotFoundError as e:
        raise click.ClickException(str(e)) from e
    click.echo(render(rpt, fmt))
