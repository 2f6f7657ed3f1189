"""配方注册表

扫描配方目录下的 *.yml / *.yaml 文件，按 (name, version) 建立索引。
文件命名约定为 <name>@<version>.yml，但真正的名称与版本以文件内容为准。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from formulary.core.exceptions import FormulaNotFoundError, ValidationError
from formulary.core.loader import load_descriptor
from formulary.core.models import FormulaDescriptor, version_key

logger = logging.getLogger(__name__)


class FormulaRegistry:
    """配方注册表 - 懒加载，首次查询时扫描目录"""

    def __init__(self, formula_dir: str | Path) -> None:
        self.formula_dir = Path(formula_dir)
        self._formulas: dict[tuple[str, str], FormulaDescriptor] | None = None

    def load(self) -> dict[tuple[str, str], FormulaDescriptor]:
        """扫描目录并加载全部配方

        Raises:
            ValidationError: 任一配方无效，或 (name, version) 重复
        """
        formulas: dict[tuple[str, str], FormulaDescriptor] = {}
        if not self.formula_dir.is_dir():
            logger.warning("配方目录不存在: %s", self.formula_dir)
            self._formulas = formulas
            return formulas

        files = sorted(
            p for p in self.formula_dir.iterdir()
            if p.suffix in (".yml", ".yaml") and not p.name.startswith(".")
        )
        for path in files:
            desc = load_descriptor(path)
            existing = formulas.get(desc.key)
            if existing is not None:
                raise ValidationError(
                    f"配方重复: {desc.label}",
                    details=[existing.source_file, str(path)],
                )
            formulas[desc.key] = desc

        logger.info("已加载 %d 个配方: %s", len(formulas), self.formula_dir)
        self._formulas = formulas
        return formulas

    @property
    def formulas(self) -> dict[tuple[str, str], FormulaDescriptor]:
        if self._formulas is None:
            return self.load()
        return self._formulas

    def names(self) -> list[str]:
        return sorted({name for name, _ in self.formulas})

    def versions(self, name: str) -> list[str]:
        """列出某个配方的全部版本（自然序，旧 -> 新）"""
        found = [ver for n, ver in self.formulas if n == name]
        if not found:
            raise FormulaNotFoundError(
                f"配方 '{name}' 不存在。可用: {self.names()}"
            )
        return sorted(found, key=version_key)

    def get(self, name: str, version: str | None = None) -> FormulaDescriptor:
        """获取配方，不指定版本时返回最新版本"""
        versions = self.versions(name)
        ver = version or versions[-1]
        desc = self.formulas.get((name, ver))
        if desc is None:
            raise FormulaNotFoundError(
                f"配方 '{name}' 没有版本 {ver}。可用版本: {versions}"
            )
        return desc

    def list_all(self) -> list[dict[str, Any]]:
        """列出全部配方（按名称、版本排序）"""
        items = sorted(
            self.formulas.values(),
            key=lambda d: (d.name, version_key(d.version)),
        )
        return [
            {
                "name": d.name,
                "version": d.version,
                "description": d.description,
                "verified": d.has_checksum,
            }
            for d in items
        ]
