"""集中配置管理

支持从 YAML 文件加载 + 编程式覆盖。全局 Config 只在 CLI / Web 入口使用，
流水线核心只接收由它派生的 RunConfig（每次触发显式传入）。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from infragate.core.exceptions import ConfigError, ValidationError
from infragate.core.models import RunConfig, Severity
from infragate.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """框架全局配置"""

    # 文件
    environments_file: str = "configs/environments.yml"
    history_file: str = "data/history.json"
    plan_dir: str = "data/plans"

    # 门禁策略
    severity_threshold: str = "high"
    approval_timeout_hours: float | None = 24.0

    # 执行
    max_parallel: int = 4
    tool_timeout: int = 1800
    # 进程内保留的已结束 run 数，更早的只能从历史查询
    retained_runs: int = 100

    # 外部工具
    terraform_bin: str = "terraform"
    tfsec_bin: str = "tfsec"
    infracost_bin: str = "infracost"

    # 审批通知: log | webhook
    notifier: str = "log"
    webhook_url: str = ""
    webhook_token: str = ""

    # 注入每次流水线的变量（凭据等），不从进程环境隐式读取
    variables: dict[str, str] = field(default_factory=dict)

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "configs/default.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if Severity.parse(self.severity_threshold) == Severity.UNKNOWN:
            raise ConfigError(f"无效的 severity_threshold: {self.severity_threshold}")
        if self.approval_timeout_hours is not None and self.approval_timeout_hours <= 0:
            raise ConfigError(f"approval_timeout_hours 必须为正数: {self.approval_timeout_hours}")
        if self.max_parallel < 1:
            raise ConfigError(f"max_parallel 必须 >= 1: {self.max_parallel}")
        if self.retained_runs < 0:
            raise ConfigError(f"retained_runs 必须 >= 0: {self.retained_runs}")
        if self.notifier not in ("log", "webhook"):
            raise ConfigError(f"不支持的 notifier: {self.notifier}")
        if self.notifier == "webhook" and not self.webhook_url:
            raise ConfigError("notifier=webhook 时必须配置 webhook_url")

    def run_config(self, **overrides: object) -> RunConfig:
        """派生单次流水线配置"""
        rc = RunConfig(
            severity_threshold=Severity.parse(self.severity_threshold),
            approval_timeout_hours=self.approval_timeout_hours,
            max_parallel=self.max_parallel,
            variables=dict(self.variables),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(rc, key, value)
        if rc.approval_timeout_hours is not None and rc.approval_timeout_hours <= 0:
            raise ValidationError(f"approval_timeout_hours 必须为正数: {rc.approval_timeout_hours}")
        return rc

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/default.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
