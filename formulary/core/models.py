"""核心数据模型

配方描述 FormulaDescriptor 是不可变的值对象：加载后在整个安装/测试过程中
不被修改。同名配方的不同版本是两条独立记录，版本只是区分字段。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from formulary.core.exceptions import ValidationError

# 支持的源码包后缀（按长度优先匹配），均为 tarfile 可直接读取的格式
ARCHIVE_SUFFIXES = (
    ".tar.gz", ".tar.bz2", ".tar.xz", ".tgz", ".tbz2", ".txz", ".tar",
)

_PRERELEASE = r"(?:[-.]?(?:alpha|beta|rc|pre)\d*)?"
_DOTTED_VERSION_RE = re.compile(r"\d+(?:\.\d+)+" + _PRERELEASE)
_BARE_VERSION_RE = re.compile(r"\d+" + _PRERELEASE)
_VERSION_PART_RE = re.compile(r"\d+|[a-zA-Z]+")


def is_archive_url(url: str) -> bool:
    """URL 指向的文件是否为支持的 tar 归档"""
    return url.split("?", 1)[0].rstrip("/").endswith(ARCHIVE_SUFFIXES)


def version_from_url(url: str) -> str:
    """从源码包文件名推导版本号

    优先取第一个带点的版本号（连同 -rc1 / beta2 等预发布后缀），
    没有时才退回最后一个单独的数字。

    例: .../archive/v1.16.3.tar.gz   -> "1.16.3"
        .../archive/v1.15-rc1.tar.gz -> "1.15-rc1"
        .../acltool-1.15.tgz         -> "1.15"
    """
    filename = url.split("?", 1)[0].rstrip("/").split("/")[-1]
    stem = filename
    for suffix in ARCHIVE_SUFFIXES:
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
            break
    dotted = _DOTTED_VERSION_RE.search(stem)
    if dotted:
        return dotted.group(0)
    bare = _BARE_VERSION_RE.findall(stem)
    return bare[-1] if bare else ""


def version_key(version: str) -> tuple[tuple[int, int, str], ...]:
    """自然版本排序键

    数字段按数值比较；字母段（预发布标记）排在版本结尾之前，
    因此 1.15-rc1 < 1.15 < 1.15.1。
    """
    parts: list[tuple[int, int, str]] = []
    for token in _VERSION_PART_RE.findall(version):
        if token.isdigit():
            parts.append((2, int(token), ""))
        else:
            parts.append((0, 0, token.lower()))
    parts.append((1, 0, ""))
    return tuple(parts)


def expand_placeholders(text: str, values: dict[str, str]) -> str:
    """替换 {prefix} / {bin} 等已知占位符，其余花括号原样保留"""
    for key, value in values.items():
        text = text.replace("{" + key + "}", value)
    return text


class RequirementLevel(str, Enum):
    """依赖的需求级别"""

    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"

    @classmethod
    def parse(cls, value: str) -> RequirementLevel:
        try:
            return cls(str(value).strip().lstrip(":").lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValidationError(
                f"未知的依赖级别 '{value}'，可选: {choices}"
            ) from None


@dataclass(frozen=True)
class Dependency:
    """依赖声明 (name, level)"""

    name: str
    level: RequirementLevel = RequirementLevel.REQUIRED

    def active_by_default(self) -> bool:
        return self.level is not RequirementLevel.OPTIONAL


@dataclass(frozen=True)
class Step:
    """一条命令步骤

    with_option / without_option 把步骤绑定到某个依赖选项:
    仅当该依赖处于启用 / 未启用状态时执行。
    """

    argv: tuple[str, ...]
    with_option: str = ""
    without_option: str = ""

    def enabled(self, active: frozenset[str] | set[str]) -> bool:
        if self.with_option and self.with_option not in active:
            return False
        if self.without_option and self.without_option in active:
            return False
        return True

    def render(self, values: dict[str, str]) -> list[str]:
        return [expand_placeholders(a, values) for a in self.argv]

    def __str__(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class FormulaDescriptor:
    """配方描述"""

    name: str
    version: str
    description: str
    homepage: str
    source_url: str
    checksum: str = ""
    dependencies: tuple[Dependency, ...] = ()
    install_steps: tuple[Step, ...] = ()
    test_steps: tuple[Step, ...] = ()
    source_file: str = field(default="", compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def has_checksum(self) -> bool:
        return bool(self.checksum)

    def resolve_options(
        self,
        with_options: tuple[str, ...] | list[str] = (),
        without_options: tuple[str, ...] | list[str] = (),
    ) -> frozenset[str]:
        """按 Homebrew 语义计算启用的依赖集合

        - required:    始终启用，不允许 --without
        - recommended: 默认启用，--without 关闭
        - optional:    默认关闭，--with 开启
        """
        declared = {d.name: d for d in self.dependencies}
        errors: list[str] = []
        for name in [*with_options, *without_options]:
            if name not in declared:
                errors.append(f"未声明的依赖: {name}")
        for name in without_options:
            dep = declared.get(name)
            if dep is not None and dep.level is RequirementLevel.REQUIRED:
                errors.append(f"必需依赖不能禁用: {name}")
        overlap = set(with_options) & set(without_options)
        if overlap:
            errors.append(f"同时指定了 with 和 without: {', '.join(sorted(overlap))}")
        if errors:
            raise ValidationError(f"{self.label} 依赖选项无效", details=errors)

        active = {d.name for d in self.dependencies if d.active_by_default()}
        active |= set(with_options)
        active -= set(without_options)
        return frozenset(active)

    def to_dict(self) -> dict[str, Any]:
        """输出与配方文件字段一致的字典（用于 info 展示）"""
        return {
            "name": self.name,
            "version": self.version,
            "desc": self.description,
            "homepage": self.homepage,
            "url": self.source_url,
            "sha256": self.checksum or None,
            "depends_on": [{d.name: d.level.value} for d in self.dependencies],
            "install": [str(s) for s in self.install_steps],
            "test": [str(s) for s in self.test_steps],
        }


@dataclass
class InstallReport:
    """单次安装/测试的执行报告"""

    formula: FormulaDescriptor
    prefix: str
    active_options: frozenset[str] = frozenset()
    archive_path: str = ""
    digest: str = ""
    verified: bool = False
    duration: float = 0.0
    steps: list[dict[str, Any]] = field(default_factory=list)

    def record(self, step: str, status: str = "done", **detail: Any) -> None:
        self.steps.append({"step": step, "status": status, **detail})

    @property
    def success(self) -> bool:
        return bool(self.steps) and all(
            s["status"] in ("done", "skipped", "warning") for s in self.steps
        )
