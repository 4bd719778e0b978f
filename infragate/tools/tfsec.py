"""tfsec 静态安全扫描器适配器

`tfsec <dir> --format json --no-colour --soft-fail`，--soft-fail 使发现项不影响退出码，
非零退出码只代表工具本身故障。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from infragate.core.exceptions import ToolError
from infragate.core.models import ConfigSnapshot, Finding, Severity
from infragate.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)


def parse_tfsec_results(data: dict[str, Any]) -> list[Finding]:
    findings: list[Finding] = []
    for item in data.get("results") or []:
        loc = item.get("location") or {}
        location = ""
        if loc.get("filename"):
            location = f"{loc['filename']}:{loc.get('start_line', 0)}"
        findings.append(Finding(
            rule_id=item.get("long_id") or item.get("rule_id") or "unknown",
            severity=Severity.parse(item.get("severity", "")),
            message=item.get("description", ""),
            location=location,
        ))
    return findings


class TfsecScanner:
    """通过 tfsec CLI 实现 Scanner 协议"""

    def __init__(
        self,
        binary: str = "tfsec",
        *,
        executor: CommandExecutor | None = None,
        timeout: int = 600,
    ) -> None:
        self.binary = binary
        self.timeout = timeout
        self._executor = executor or get_executor()

    def scan(self, snapshot: ConfigSnapshot) -> list[Finding]:
        r = self._executor.execute(
            [self.binary, snapshot.working_dir, "--format", "json",
             "--no-colour", "--soft-fail"],
            cwd=".", env=dict(snapshot.variables), timeout=self.timeout,
        )
        if not r.success:
            raise ToolError(self.binary, f"扫描失败 (rc={r.returncode}): {r.stderr[:500]}")
        try:
            data = json.loads(r.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ToolError(self.binary, f"输出无法解析: {e}") from None
        if not isinstance(data, dict):
            raise ToolError(self.binary, f"输出格式异常: 期望 JSON 对象，实际为 {type(data).__name__}")
        findings = parse_tfsec_results(data)
        logger.info("tfsec 扫描完成: env=%s findings=%d", snapshot.environment, len(findings))
        return findings
