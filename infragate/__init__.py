"""infragate - 多环境基础设施部署流水线"""

__version__ = "0.3.0"
