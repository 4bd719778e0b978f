"""CLI：杂项命令（Web 服务、配置查看）"""

from __future__ import annotations

import click
import yaml

from infragate.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(serve)
    group.add_command(show_config)


@click.command()
@click.option("--host", default="127.0.0.1", help="监听地址")
@click.option("--port", default=8888, help="监听端口")
def serve(host: str, port: int) -> None:
    """启动审批 / 流水线 HTTP 服务"""
    from infragate.web.app import run_server
    run_server(port=port, host=host)


@click.command(name="config")
def show_config() -> None:
    """显示当前生效的配置"""
    data = _svc().config.to_dict()
    if data.get("webhook_token"):
        data["webhook_token"] = "***"
    click.echo(yaml.safe_dump(data, allow_unicode=True, sort_keys=False))
