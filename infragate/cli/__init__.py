"""infragate 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os
from typing import Any

import click

from infragate import __version__
from infragate.core.config import init_config
from infragate.services.container import get_container, reset_container
from infragate.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


def _parse_kv_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    """解析 key=value 参数对"""
    result: dict[str, str] = {}
    for p in pairs:
        if "=" in p:
            k, v = p.split("=", 1)
            result[k.strip()] = v.strip()
    return result


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", default=None, envvar="INFRAGATE_CONFIG",
              help="配置文件路径（默认使用内置默认值）")
def main(config: str | None) -> None:
    """infragate - 多环境基础设施部署流水线"""
    setup_logging(
        level=os.getenv("INFRAGATE_LOG_LEVEL", "INFO"),
        json_output=os.getenv("INFRAGATE_LOG_JSON", "") == "1",
    )
    if config:
        init_config(config)
        reset_container()


# 注册各领域子命令
from infragate.cli.cmd_run import register as _reg_run  # noqa: E402
from infragate.cli.cmd_envs import register as _reg_envs  # noqa: E402
from infragate.cli.cmd_history import register as _reg_history  # noqa: E402
from infragate.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_run(main)
_reg_envs(main)
_reg_history(main)
_reg_misc(main)
