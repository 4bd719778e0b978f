"""infragate 日志配置

支持人类可读文本与结构化 JSON 两种输出，JSON 格式供 CI 流水线日志采集。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# 通过 extra={...} 附加到日志记录上的流水线上下文字段
_CONTEXT_FIELDS = ("run_id", "environment", "gate")


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "INFO",
            "logger": "infragate.core.gate",
            "message": "...",
            "run_id": "3f2a9c1e",       (仅当 extra 提供时)
            "environment": "prod",      (仅当 extra 提供时)
            "exception": "traceback..." (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            # 使用 record.created 记录事件发生时间而非格式化时间
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        json_output: 为 True 时使用 JSON 格式（适用于 CI），否则使用人类可读格式

    说明:
        - 输出到 stderr，stdout 留给报告输出
        - 自动清理已有 handlers，避免重复输出
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
        handler.setFormatter(logging.Formatter(fmt))

    root.addHandler(handler)


def reset_logging() -> None:
    """重置根日志器配置（测试或重新配置时使用）"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
