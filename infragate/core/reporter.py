"""流水线报告生成器 - Strategy 模式

ArtifactReporter 作为 RunObserver 记录每次状态迁移，summarize() 把一次
PipelineRun 的门禁 / 执行 / 审批结果聚合为有序 Report。纯聚合，不做任何判定。

每种输出格式实现 ReportFormatter 接口，通过注册制工厂调用:
  - json:     审计日志 / 历史存储
  - markdown: 评审界面评论（如 PR comment）
  - text:     控制台
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from infragate.core.models import PipelineRun, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Report:
    """单次流水线汇总报告"""

    run_id: str
    kind: str
    change_ref: str
    status: str
    started_at: str = ""
    finished_at: str = ""
    environments: list[dict[str, Any]] = field(default_factory=list)
    timeline: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "kind": self.kind,
            "change_ref": self.change_ref,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "environments": self.environments,
            "timeline": self.timeline,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Report:
        return cls(
            run_id=data.get("run_id", ""),
            kind=data.get("kind", ""),
            change_ref=data.get("change_ref", ""),
            status=data.get("status", ""),
            started_at=data.get("started_at", ""),
            finished_at=data.get("finished_at", ""),
            environments=list(data.get("environments") or []),
            timeline=list(data.get("timeline") or []),
        )


class ArtifactReporter:
    """报告收集器：观察状态迁移，按 run 聚合"""

    def __init__(self) -> None:
        self._timelines: dict[str, list[dict[str, str]]] = {}
        self._lock = threading.Lock()

    def on_transition(
        self, run: PipelineRun, event: str, *,
        environment: str = "", detail: str = "",
    ) -> None:
        entry = {
            "at": utcnow().isoformat(),
            "event": event,
            "environment": environment,
            "detail": detail,
        }
        with self._lock:
            self._timelines.setdefault(run.run_id, []).append(entry)

    def timeline(self, run_id: str) -> list[dict[str, str]]:
        with self._lock:
            return list(self._timelines.get(run_id, []))

    def discard(self, run_id: str) -> None:
        with self._lock:
            self._timelines.pop(run_id, None)

    def summarize(self, run: PipelineRun) -> Report:
        data = run.to_dict()
        return Report(
            run_id=run.run_id,
            kind=run.kind.value,
            change_ref=run.trigger.change_ref,
            status=run.status.value,
            started_at=data["started_at"],
            finished_at=data["finished_at"],
            environments=data["environments"],
            timeline=self.timeline(run.run_id),
        )


# =========================================================================
# Strategy: ReportFormatter
# =========================================================================


class ReportFormatter(ABC):
    """报告格式化策略基类"""

    @abstractmethod
    def format(self, report: Report) -> str:
        """将报告格式化为字符串"""

    @abstractmethod
    def extension(self) -> str:
        """输出文件扩展名（不含 .）"""


class JSONFormatter(ReportFormatter):
    def format(self, report: Report) -> str:
        return json.dumps(report.to_dict(), indent=2, ensure_ascii=False)

    def extension(self) -> str:
        return "json"


_STATUS_ICON = {
    "succeeded": "✅", "failed": "❌", "cancelled": "⏹", "running": "⏳", "pending": "⏳",
    "passed": "✅", "applied": "✅", "blocked": "⛔", "skipped": "⏭",
}


def _findings_text(findings: dict[str, int]) -> str:
    if not findings:
        return "-"
    return ", ".join(f"{sev}={n}" for sev, n in findings.items())


def _execution_text(execution: dict[str, Any] | None) -> str:
    if not execution:
        return "未执行"
    c = execution["changes"]
    text = (
        f"{execution['operation']} {execution['outcome']} "
        f"(+{c['create']} ~{c['update']} -{c['destroy']})"
    )
    if execution.get("error"):
        text += f": {execution['error']}"
    return text


def _approval_text(approval: dict[str, Any] | None) -> str:
    if not approval:
        return "无需审批"
    text = approval["decision"]
    if approval.get("decided_by"):
        text += f" by {approval['decided_by']}"
    if approval.get("comment"):
        text += f" ({approval['comment']})"
    return text


class MarkdownFormatter(ReportFormatter):
    """评审界面评论格式"""

    def format(self, report: Report) -> str:
        icon = _STATUS_ICON.get(report.status, "")
        lines = [
            f"## infragate {report.kind} {icon} `{report.status}`",
            "",
            f"- run: `{report.run_id}`",
            f"- change: `{report.change_ref or '-'}`",
            "",
        ]
        for env in report.environments:
            env_icon = _STATUS_ICON.get(env["status"], "")
            title = f"### {env['name']}"
            if env["protected"]:
                title += " (protected)"
            lines.append(f"{title} {env_icon} `{env['status']}`")
            if env.get("blocked_by"):
                lines.append(f"> 阻断: {env['blocked_by']}")
            lines.append("")
            lines.append("| gate | verdict | fault | findings |")
            lines.append("|---|---|---|---|")
            for gate in env["gates"]:
                lines.append(
                    f"| {gate['kind']} | {gate['verdict']} | {gate['fault']} "
                    f"| {_findings_text(gate['findings'])} |"
                )
            lines.append("")
            for gate in env["gates"]:
                if gate["report"]:
                    lines.append(f"<details><summary>{gate['kind']}</summary>")
                    lines.append("")
                    lines.append("```")
                    lines.append(gate["report"])
                    lines.append("```")
                    lines.append("</details>")
            lines.append(f"- 审批: {_approval_text(env['approval'])}")
            lines.append(f"- 执行: {_execution_text(env['execution'])}")
            lines.append("")
        return "\n".join(lines)

    def extension(self) -> str:
        return "md"


class TextFormatter(ReportFormatter):
    """控制台格式"""

    def format(self, report: Report) -> str:
        lines = [
            f"=== infragate {report.kind} [{report.status}] run={report.run_id} ===",
        ]
        if report.change_ref:
            lines.append(f"change: {report.change_ref}")
        for env in report.environments:
            mark = " (protected)" if env["protected"] else ""
            lines.append(f"\n[{env['status']:9s}] {env['name']}{mark}")
            if env.get("blocked_by"):
                lines.append(f"  阻断: {env['blocked_by']}")
            for gate in env["gates"]:
                lines.append(
                    f"  - {gate['kind']:14s} {gate['verdict']:5s}"
                    f" findings={_findings_text(gate['findings'])}"
                )
            lines.append(f"  审批: {_approval_text(env['approval'])}")
            lines.append(f"  执行: {_execution_text(env['execution'])}")
        return "\n".join(lines)

    def extension(self) -> str:
        return "txt"


# =========================================================================
# 注册制工厂
# =========================================================================

_formatters: dict[str, type[ReportFormatter]] = {
    "json": JSONFormatter,
    "markdown": MarkdownFormatter,
    "text": TextFormatter,
}


def register_formatter(name: str, cls: type[ReportFormatter]) -> None:
    """注册自定义报告格式"""
    _formatters[name] = cls


def available_formats() -> list[str]:
    return list(_formatters)


def get_formatter(fmt: str) -> ReportFormatter:
    formatter_cls = _formatters.get(fmt)
    if formatter_cls is None:
        raise ValueError(f"不支持的格式: {fmt}（可用: {list(_formatters)}）")
    return formatter_cls()


def render(report: Report, fmt: str = "text") -> str:
    return get_formatter(fmt).format(report)
