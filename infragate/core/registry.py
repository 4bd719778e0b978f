"""YAML 注册表基类

基于 YAML 文件的注册表共享相同的加载、保存、增删改查逻辑，
子类只需指定 section_key。section 内条目保持声明顺序。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from infragate.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


class YamlRegistry:
    """YAML 文件注册表基类

    子类用法:
        class MyRegistry(YamlRegistry):
            section_key = "items"
    """

    section_key: str = "entries"

    def __init__(self, registry_file: str) -> None:
        self.registry_file = Path(registry_file)
        self._data: dict[str, Any] = load_yaml(self.registry_file)

    def _section(self) -> dict[str, dict[str, Any]]:
        """获取当前 section 字典（自动创建）"""
        section = self._data.get(self.section_key)
        if not isinstance(section, dict):
            section = {}
            self._data[self.section_key] = section
        return section

    def _save(self) -> None:
        save_yaml(self.registry_file, self._data)

    def _put(self, name: str, entry: dict[str, Any]) -> dict[str, Any]:
        self._section()[name] = entry
        self._save()
        return entry

    def _get_raw(self, name: str) -> dict[str, Any] | None:
        entry = self._section().get(name)
        if entry is None:
            return None
        return entry if isinstance(entry, dict) else {}

    def _list_raw(self) -> list[dict[str, Any]]:
        """列出所有条目（带 name 字段）"""
        return [{"name": k, **(v or {})} for k, v in self._section().items()]

    def _remove(self, name: str) -> bool:
        section = self._section()
        if name not in section:
            return False
        del section[name]
        self._save()
        return True
