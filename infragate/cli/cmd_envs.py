"""CLI：推广链路环境管理命令"""

from __future__ import annotations

import click

from infragate.cli import _parse_kv_pairs, _svc
from infragate.core.exceptions import ValidationError
from infragate.core.models import EnvironmentSpec


def register(group: click.Group) -> None:
    group.add_command(envs_group)


@click.group(name="envs")
def envs_group() -> None:
    """推广链路环境管理"""


@envs_group.command(name="list")
def envs_list() -> None:
    """按推广顺序列出环境"""
    chain = _svc().environments.chain()
    if not chain:
        click.echo("没有已注册的环境。")
        return
    for i, spec in enumerate(chain, 1):
        flag = "protected" if spec.protected else "-"
        reviewers = ",".join(spec.required_reviewers) or "-"
        click.echo(
            f"  {i}. {spec.name:12s} [{flag}] 审批人={reviewers}  "
            f"dir={spec.working_dir or '.'}  {spec.description}"
        )


@envs_group.command(name="add")
@click.argument("name")
@click.option("--protected/--unprotected", default=False, help="是否需要人工审批")
@click.option("--reviewer", multiple=True, help="审批人（可多次指定）")
@click.option("--working-dir", default="", help="基础设施代码目录")
@click.option("--timeout", "timeout_hours", type=float, default=None, help="审批超时（小时）")
@click.option("--var", multiple=True, help="环境变量 key=value（可多次）")
@click.option("--desc", default="", help="描述")
def envs_add(
    name: str, protected: bool, reviewer: tuple[str, ...], working_dir: str,
    timeout_hours: float | None, var: tuple[str, ...], desc: str,
) -> None:
    """注册（或更新）环境，新环境追加到链路末尾"""
    spec = EnvironmentSpec(
        name=name, protected=protected, required_reviewers=list(reviewer),
        working_dir=working_dir, variables=_parse_kv_pairs(var),
        approval_timeout_hours=timeout_hours, description=desc,
    )
    try:
        _svc().environments.register(spec)
    except ValidationError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"环境已注册: {name}")


@envs_group.command(name="remove")
@click.argument("name")
def envs_remove(name: str) -> None:
    """移除环境"""
    if _svc().environments.remove(name):
        click.echo(f"环境已移除: {name}")
    else:
        raise click.ClickException(f"环境不存在: {name}")
