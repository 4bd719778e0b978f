"""服务容器：统一依赖注入

所有服务和核心组件通过容器获取，同一容器内的实例共享状态
（审批记录、执行锁、进行中的 run）。CLI 和 Web 层通过 get_container() 获取。

依赖关系图（→ 表示依赖）:
  gates        → engine, scanner, estimator
  executor     → engine
  approvals    → notifier
  orchestrator → gates, executor, approvals, environments, reporter
  runs         → orchestrator, reporter, history

外部工具可在构造时注入（测试替身、其他引擎实现），否则按 Config 创建
terraform / tfsec / infracost 适配器。

用法:
    container = ServiceContainer(config=Config.from_file("configs/default.yml"))
    run, report = container.runs.execute(TriggerEvent(kind=TriggerKind.REVIEW))
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infragate.core.approval import ApprovalCoordinator
    from infragate.core.config import Config
    from infragate.core.environments import EnvironmentRegistry
    from infragate.core.executor import EnvironmentExecutor
    from infragate.core.gate import GateEvaluator
    from infragate.core.history import RunHistory
    from infragate.core.protocols import (
        ApprovalNotifier,
        CostEstimator,
        ProvisioningEngine,
        Scanner,
    )
    from infragate.core.reporter import ArtifactReporter
    from infragate.services.orchestrator import PipelineOrchestrator
    from infragate.services.run_service import RunService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        engine: ProvisioningEngine | None = None,
        scanner: Scanner | None = None,
        estimator: CostEstimator | None = None,
        notifier: ApprovalNotifier | None = None,
        approvals: ApprovalCoordinator | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from infragate.core.config import get_config
            config = get_config()
        self._config = config
        for key, value in (
            ("engine", engine), ("scanner", scanner), ("estimator", estimator),
            ("notifier", notifier), ("approvals", approvals),
        ):
            if value is not None:
                self._instances[key] = value

    @property
    def config(self) -> Config:
        return self._config

    # ---- 外部工具 ----

    @property
    def engine(self) -> ProvisioningEngine:
        if "engine" not in self._instances:
            from infragate.tools.terraform import TerraformEngine
            self._instances["engine"] = TerraformEngine(
                binary=self._config.terraform_bin,
                plan_dir=self._config.plan_dir,
                timeout=self._config.tool_timeout,
            )
        return self._instances["engine"]  # type: ignore[return-value]

    @property
    def scanner(self) -> Scanner:
        if "scanner" not in self._instances:
            from infragate.tools.tfsec import TfsecScanner
            self._instances["scanner"] = TfsecScanner(
                binary=self._config.tfsec_bin, timeout=self._config.tool_timeout,
            )
        return self._instances["scanner"]  # type: ignore[return-value]

    @property
    def estimator(self) -> CostEstimator:
        if "estimator" not in self._instances:
            from infragate.tools.infracost import InfracostEstimator
            self._instances["estimator"] = InfracostEstimator(
                binary=self._config.infracost_bin, timeout=self._config.tool_timeout,
            )
        return self._instances["estimator"]  # type: ignore[return-value]

    @property
    def notifier(self) -> ApprovalNotifier:
        if "notifier" not in self._instances:
            from infragate.services.notifiers import LogNotifier, WebhookNotifier
            if self._config.notifier == "webhook":
                self._instances["notifier"] = WebhookNotifier(
                    self._config.webhook_url, token=self._config.webhook_token,
                )
            else:
                self._instances["notifier"] = LogNotifier()
        return self._instances["notifier"]  # type: ignore[return-value]

    # ---- 核心组件 ----

    @property
    def environments(self) -> EnvironmentRegistry:
        if "environments" not in self._instances:
            from infragate.core.environments import EnvironmentRegistry
            self._instances["environments"] = EnvironmentRegistry(
                self._config.environments_file,
            )
        return self._instances["environments"]  # type: ignore[return-value]

    @property
    def gates(self) -> GateEvaluator:
        if "gates" not in self._instances:
            from infragate.core.gate import GateEvaluator
            self._instances["gates"] = GateEvaluator(
                self.engine, self.scanner, self.estimator,
            )
        return self._instances["gates"]  # type: ignore[return-value]

    @property
    def executor(self) -> EnvironmentExecutor:
        if "executor" not in self._instances:
            from infragate.core.executor import EnvironmentExecutor
            self._instances["executor"] = EnvironmentExecutor(self.engine)
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def approvals(self) -> ApprovalCoordinator:
        if "approvals" not in self._instances:
            from infragate.core.approval import ApprovalCoordinator
            self._instances["approvals"] = ApprovalCoordinator(self.notifier)
        return self._instances["approvals"]  # type: ignore[return-value]

    @property
    def reporter(self) -> ArtifactReporter:
        if "reporter" not in self._instances:
            from infragate.core.reporter import ArtifactReporter
            self._instances["reporter"] = ArtifactReporter()
        return self._instances["reporter"]  # type: ignore[return-value]

    @property
    def history(self) -> RunHistory:
        if "history" not in self._instances:
            from infragate.core.history import RunHistory
            self._instances["history"] = RunHistory(self._config.history_file)
        return self._instances["history"]  # type: ignore[return-value]

    # ---- 服务层 ----

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        if "orchestrator" not in self._instances:
            from infragate.services.orchestrator import PipelineOrchestrator
            self._instances["orchestrator"] = PipelineOrchestrator(self)
        return self._instances["orchestrator"]  # type: ignore[return-value]

    @property
    def runs(self) -> RunService:
        if "runs" not in self._instances:
            from infragate.services.run_service import RunService
            self._instances["runs"] = RunService(self)
        return self._instances["runs"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def set_container(container: ServiceContainer) -> None:
    """替换全局容器（CLI 交互模式 / 测试注入）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = container


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
