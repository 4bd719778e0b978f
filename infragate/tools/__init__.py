"""外部工具适配器

- terraform.py: 供应引擎 (plan / apply)
- tfsec.py: 静态安全扫描
- infracost.py: 成本估算
"""

from infragate.tools.infracost import InfracostEstimator
from infragate.tools.terraform import TerraformEngine
from infragate.tools.tfsec import TfsecScanner

__all__ = ["InfracostEstimator", "TerraformEngine", "TfsecScanner"]
