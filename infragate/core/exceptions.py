"""统一异常体系

所有业务异常继承 InfraGateError，每类携带稳定的 code。
Web 层据此映射 HTTP 状态码，CLI 层据此输出友好提示。

错误分类:
  - 策略失败: 不抛异常，体现在 GateResult(verdict=fail, fault=policy)
  - 基础设施故障: ToolError，由门禁评估器 / 执行器收敛为 fault=infrastructure
  - 协调故障: ConcurrentExecutionError / AlreadyDecidedError /
    UnauthorizedReviewerError / NotFoundError，返回调用方，可恢复
  - 致命故障: PipelineStateError，立即终止流水线且绝不 apply
"""

from __future__ import annotations


class InfraGateError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(InfraGateError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(InfraGateError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotFoundError(InfraGateError):
    """指定的流水线 / 审批记录 / 环境不存在"""

    code = "NOT_FOUND"


class ExecutionError(InfraGateError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"


class ToolError(InfraGateError):
    """外部工具（引擎 / 扫描器 / 成本估算器）自身故障

    超时、认证失败、输出格式错误等，与策略失败严格区分。
    """

    code = "TOOL_ERROR"

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"[{tool}] {message}")
        self.tool = tool


class ConcurrentExecutionError(InfraGateError):
    """同一环境已有 apply 在执行中"""

    code = "CONCURRENT_EXECUTION"

    def __init__(self, environment: str) -> None:
        super().__init__(f"环境 {environment} 已有执行中的 apply")
        self.environment = environment


class AlreadyDecidedError(InfraGateError):
    """审批记录已处于终态，拒绝重复决策"""

    code = "ALREADY_DECIDED"

    def __init__(self, record_id: str, decision: str) -> None:
        super().__init__(f"审批记录 {record_id} 已决策: {decision}")
        self.record_id = record_id
        self.decision = decision


class UnauthorizedReviewerError(InfraGateError):
    """决策人不在审批人名单内"""

    code = "UNAUTHORIZED_REVIEWER"


class PipelineStateError(InfraGateError):
    """流水线状态损坏（如无通过的 plan 门禁却试图 apply）"""

    code = "PIPELINE_STATE"


class PipelineCancelled(InfraGateError):
    """流水线已被外部取消"""

    code = "CANCELLED"
