"""环境注册表：推广链路声明

configs/environments.yml 示例:

    environments:
      dev:
        working_dir: infra/envs/dev
      prod:
        protected: true
        required_reviewers: [alice, bob]
        working_dir: infra/envs/prod
        approval_timeout_hours: 24

声明顺序即推广顺序（dev → prod）。每个环境拥有独立的 working_dir 与变量，
互不共享配置。
"""

from __future__ import annotations

import logging
from typing import Any

from infragate.core.exceptions import ValidationError
from infragate.core.models import ConfigSnapshot, EnvironmentSpec
from infragate.core.registry import YamlRegistry

logger = logging.getLogger(__name__)


class EnvironmentRegistry(YamlRegistry):
    """推广链路环境注册表"""

    section_key = "environments"

    def register(self, spec: EnvironmentSpec) -> dict[str, Any]:
        """注册（或更新）环境，新环境追加到链路末尾"""
        if not spec.name:
            raise ValidationError("环境 name 为必填")
        if spec.approval_timeout_hours is not None and spec.approval_timeout_hours <= 0:
            raise ValidationError(f"approval_timeout_hours 必须为正数: {spec.name}")
        entry: dict[str, Any] = {
            "protected": spec.protected,
            "required_reviewers": list(spec.required_reviewers),
            "working_dir": spec.working_dir,
            "variables": dict(spec.variables),
            "description": spec.description,
        }
        if spec.approval_timeout_hours is not None:
            entry["approval_timeout_hours"] = spec.approval_timeout_hours
        self._put(spec.name, entry)
        logger.info("环境已注册: %s (protected=%s)", spec.name, spec.protected)
        return entry

    def get(self, name: str) -> EnvironmentSpec | None:
        entry = self._get_raw(name)
        if entry is None:
            return None
        timeout = entry.get("approval_timeout_hours")
        return EnvironmentSpec(
            name=name,
            protected=bool(entry.get("protected", False)),
            required_reviewers=[str(r) for r in entry.get("required_reviewers") or []],
            working_dir=str(entry.get("working_dir") or ""),
            variables={str(k): str(v) for k, v in (entry.get("variables") or {}).items()},
            approval_timeout_hours=float(timeout) if timeout is not None else None,
            description=str(entry.get("description") or ""),
        )

    def list(self) -> list[dict[str, Any]]:
        return self._list_raw()

    def remove(self, name: str) -> bool:
        return self._remove(name)

    def chain(self) -> list[EnvironmentSpec]:
        """按声明顺序返回完整推广链路"""
        specs = [self.get(name) for name in self._section()]
        return [s for s in specs if s is not None]

    def resolve(self, names: list[str]) -> list[EnvironmentSpec]:
        """把请求的环境名解析为链路顺序的 EnvironmentSpec 列表

        空列表表示整条链路；未知环境名抛 ValidationError；
        结果始终按链路声明顺序排列，与请求顺序无关。
        """
        chain = self.chain()
        if not names:
            return chain
        known = {s.name for s in chain}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ValidationError(f"未知环境: {', '.join(unknown)}", details=unknown)
        wanted = set(names)
        return [s for s in chain if s.name in wanted]


def build_snapshot(
    spec: EnvironmentSpec, *, change_ref: str = "", run_id: str = "",
    variables: dict[str, str] | None = None,
) -> ConfigSnapshot:
    """为环境构建门禁 / 引擎输入快照：运行变量在下，环境变量覆盖在上"""
    merged = {**(variables or {}), **spec.variables}
    return ConfigSnapshot(
        environment=spec.name,
        working_dir=spec.working_dir or ".",
        change_ref=change_ref,
        run_id=run_id,
        variables=merged,
    )
