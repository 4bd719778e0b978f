"""审批通知通道

  log:     写日志，审批人通过 Web API / CLI 决策
  webhook: POST JSON 到聊天机器人 / 工单系统

通知失败只记日志，不影响审批记录本身（记录仍可通过 record_decision 决策或超时）。
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from urllib.parse import urlparse

from infragate.core.exceptions import ValidationError
from infragate.core.models import ApprovalRecord

logger = logging.getLogger(__name__)


class LogNotifier:
    """仅记录日志的通知器（默认）"""

    def notify(self, record: ApprovalRecord) -> None:
        logger.info(
            "待审批: env=%s id=%s reviewers=%s，"
            "决策: POST /api/approvals/%s/decision",
            record.environment, record.record_id,
            ", ".join(record.required_reviewers) or "任意", record.record_id,
        )


class WebhookNotifier:
    """HTTP webhook 通知器"""

    def __init__(self, url: str, *, token: str = "", timeout: int = 10) -> None:
        if urlparse(url).scheme not in ("http", "https"):
            raise ValidationError(f"webhook_url 仅支持 http/https: {url}")
        self.url = url
        self.token = token
        self.timeout = timeout

    def notify(self, record: ApprovalRecord) -> None:
        body = json.dumps(
            {"event": "approval_requested", "approval": record.to_dict()},
            ensure_ascii=False,
        ).encode("utf-8")
        req = urllib.request.Request(
            self.url, data=body, method="POST",
            headers={"Content-Type": "application/json"},
        )
        if self.token:
            req.add_header("Authorization", f"Bearer {self.token}")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                logger.info("审批通知已发送: id=%s status=%s", record.record_id, resp.status)
        except urllib.error.HTTPError as e:
            logger.error("审批通知失败: id=%s HTTP %s %s", record.record_id, e.code, e.reason)
        except (urllib.error.URLError, OSError) as e:
            logger.error("审批通知失败: id=%s %s", record.record_id, e)
