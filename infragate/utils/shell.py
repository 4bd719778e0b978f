"""Shell 命令执行工具：统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，外部工具适配器（terraform /
tfsec / infracost）只依赖该协议，测试时注入 mock 实现即可。
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from infragate.core.exceptions import ToolError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议

    实现此协议即可替换底层执行方式（本地、容器、远程 runner 等）。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）

    env 在当前进程环境变量之上叠加，而非整体替换（PATH 等需保留）。
    超时和可执行文件缺失统一转换为 ToolError。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        tool = args[0] if args else "?"
        merged = {**os.environ, **env} if env else None
        logger.debug("执行命令: %s (cwd=%s)", " ".join(args), cwd)
        try:
            r = subprocess.run(
                args, capture_output=True, text=True,
                cwd=cwd, env=merged, check=False, timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ToolError(tool, f"命令超时 ({timeout}s)") from None
        except FileNotFoundError:
            raise ToolError(tool, "可执行文件不存在") from None
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor
