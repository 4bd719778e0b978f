"""流水线运行历史

每次流水线进入终态后追加一条报告到历史存储（JSON 文件，原子写入），支持:
  - 按状态 / 触发类型 / 环境查询
  - 按 run_id 取回完整报告（审计）
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from infragate.core.exceptions import NotFoundError
from infragate.core.reporter import Report
from infragate.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)


class RunHistory:
    """流水线历史管理器"""

    def __init__(self, history_file: str = "") -> None:
        if not history_file:
            from infragate.core.config import get_config
            history_file = get_config().history_file
        self.history_file = Path(history_file)
        self._lock = threading.Lock()

    def _load(self) -> list[dict]:
        if not self.history_file.exists():
            return []
        with open(self.history_file, encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, list) else []

    def _save(self, records: list[dict]) -> None:
        content = json.dumps(records, indent=2, ensure_ascii=False)
        atomic_write(self.history_file, content)

    def record(self, report: Report) -> dict:
        """追加一条终态报告"""
        entry = report.to_dict()
        with self._lock:
            records = self._load()
            records.append(entry)
            self._save(records)
        logger.info("流水线历史已记录: run_id=%s status=%s", report.run_id, report.status)
        return entry

    def get(self, run_id: str) -> Report:
        for entry in self._load():
            if entry.get("run_id") == run_id:
                return Report.from_dict(entry)
        raise NotFoundError(f"历史中不存在流水线: {run_id}")

    def query(
        self,
        *,
        status: str | None = None,
        kind: str | None = None,
        environment: str | None = None,
        limit: int = 50,
    ) -> list[dict]:
        """查询历史记录，按结束时间倒序"""
        records = self._load()
        if status:
            records = [r for r in records if r.get("status") == status]
        if kind:
            records = [r for r in records if r.get("kind") == kind]
        if environment:
            records = [
                r for r in records
                if any(e.get("name") == environment for e in r.get("environments", []))
            ]
        records.sort(key=lambda x: x.get("finished_at", ""), reverse=True)
        return records[:limit]
