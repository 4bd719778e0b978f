"""流水线编排器

- steps.py: 单环境步骤（门禁 / 审批 / apply）
- orchestrator.py: 跨环境状态机
"""

from infragate.services.orchestrator.orchestrator import PipelineOrchestrator
from infragate.services.orchestrator.steps import PipelineSteps, describe_gate_block

__all__ = [
    "PipelineOrchestrator",
    "PipelineSteps",
    "describe_gate_block",
]
