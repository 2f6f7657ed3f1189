"""配方文件解析

配方文件是一个 YAML 映射，字段与 Homebrew formula 一一对应:

    desc: "..."
    homepage: "https://..."
    url: "https://.../v1.15.tar.gz"
    sha256: "adee34..."            # 可省略，省略时安装会告警
    depends_on:
      - readline: recommended      # 也可以只写名字，视为 required
    install:
      - ["./configure", "--prefix={prefix}"]
      - make install               # 字符串按 shell 规则拆分
      - run: ["make", "install-smb"]
        with: libsmbclient         # 仅在启用该依赖时执行
    test:
      - ["{bin}/acltool", "lac", "."]

name 缺省时取文件名 "@" 之前的部分，version 缺省时从 url 推导。
version 显式写出时必须加引号: YAML 会把 1.10 读成浮点数 1.1。
"""

from __future__ import annotations

import logging
import re
import shlex
from pathlib import Path
from typing import Any

import yaml

from formulary.core.exceptions import ValidationError
from formulary.core.models import (
    Dependency,
    FormulaDescriptor,
    RequirementLevel,
    Step,
    is_archive_url,
    version_from_url,
)
from formulary.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9+_.\-]*$")


def _parse_argv(raw: Any, where: str, errors: list[str]) -> tuple[str, ...]:
    if isinstance(raw, str):
        try:
            argv = shlex.split(raw)
        except ValueError as e:
            errors.append(f"{where}: 命令无法拆分: {e}")
            return ()
    elif isinstance(raw, list) and all(isinstance(a, (str, int, float)) for a in raw):
        argv = [str(a) for a in raw]
    else:
        errors.append(f"{where}: 命令必须是字符串或字符串列表")
        return ()
    if not argv:
        errors.append(f"{where}: 空命令")
    return tuple(argv)


def _parse_steps(raw: Any, section: str, errors: list[str]) -> tuple[Step, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        errors.append(f"{section}: 必须是列表")
        return ()
    steps: list[Step] = []
    for i, entry in enumerate(raw):
        where = f"{section}[{i}]"
        if isinstance(entry, dict):
            unknown = set(entry) - {"run", "with", "without"}
            if unknown:
                errors.append(f"{where}: 未知字段 {sorted(unknown)}")
            if "run" not in entry:
                errors.append(f"{where}: 缺少 run")
                continue
            argv = _parse_argv(entry["run"], where, errors)
            step = Step(
                argv=argv,
                with_option=str(entry.get("with") or ""),
                without_option=str(entry.get("without") or ""),
            )
        else:
            step = Step(argv=_parse_argv(entry, where, errors))
        if step.argv:
            steps.append(step)
    return tuple(steps)


def _parse_dependencies(raw: Any, errors: list[str]) -> tuple[Dependency, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        errors.append("depends_on: 必须是列表")
        return ()
    deps: list[Dependency] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw):
        if isinstance(entry, str):
            name, level = entry, RequirementLevel.REQUIRED
        elif isinstance(entry, dict) and len(entry) == 1:
            name, raw_level = next(iter(entry.items()))
            try:
                level = RequirementLevel.parse(raw_level)
            except ValidationError as e:
                errors.append(f"depends_on[{i}]: {e}")
                continue
        else:
            errors.append(f"depends_on[{i}]: 必须是名称或 {{名称: 级别}}")
            continue
        name = str(name)
        if name in seen:
            errors.append(f"depends_on[{i}]: 重复依赖 {name}")
            continue
        seen.add(name)
        deps.append(Dependency(name=name, level=level))
    return tuple(deps)


def parse_descriptor(
    data: dict[str, Any], *, default_name: str = "", source_file: str = "",
) -> FormulaDescriptor:
    """把配方字典解析为 FormulaDescriptor，所有问题汇总后一次性抛出

    Raises:
        ValidationError: details 中列出每一处问题
    """
    errors: list[str] = []

    name = str(data.get("name") or default_name).strip()
    if not name:
        errors.append("name: 缺失")
    elif not _NAME_RE.match(name):
        errors.append(f"name: 非法名称 '{name}'")

    url = str(data.get("url") or "").strip()
    if not url:
        errors.append("url: 缺失")
    elif not is_archive_url(url):
        errors.append(f"url: 不支持的源码包格式，仅支持 tar 归档: {url}")

    raw_version = data.get("version")
    if raw_version is not None and not isinstance(raw_version, str):
        errors.append(
            f"version: 必须是带引号的字符串，当前被解析为 {raw_version!r}",
        )
        version = ""
    else:
        version = (raw_version or "").strip() or version_from_url(url)
        if url and not version:
            errors.append("version: 无法从 url 推导，请显式指定")

    checksum = str(data.get("sha256") or "").strip().lower()
    if checksum and not _SHA256_RE.match(checksum):
        errors.append(f"sha256: 不是合法的 64 位十六进制摘要: {checksum}")

    dependencies = _parse_dependencies(data.get("depends_on"), errors)
    install_steps = _parse_steps(data.get("install"), "install", errors)
    test_steps = _parse_steps(data.get("test"), "test", errors)
    if not install_steps and not any(e.startswith("install") for e in errors):
        errors.append("install: 缺失或为空")

    declared = {d.name for d in dependencies}
    for step in (*install_steps, *test_steps):
        for opt in (step.with_option, step.without_option):
            if opt and opt not in declared:
                errors.append(f"步骤 '{step}' 引用了未声明的依赖: {opt}")

    label = source_file or name or "<配方>"
    if errors:
        raise ValidationError(f"配方无效: {label}", details=errors)

    return FormulaDescriptor(
        name=name,
        version=version,
        description=str(data.get("desc") or "").strip(),
        homepage=str(data.get("homepage") or "").strip(),
        source_url=url,
        checksum=checksum,
        dependencies=dependencies,
        install_steps=install_steps,
        test_steps=test_steps,
        source_file=source_file,
    )


def load_descriptor(path: str | Path) -> FormulaDescriptor:
    """从 YAML 文件加载单个配方"""
    p = Path(path)
    if not p.is_file():
        raise ValidationError(f"配方文件不存在: {p}")
    try:
        data = load_yaml(p)
    except (yaml.YAMLError, ValueError) as e:
        raise ValidationError(f"配方文件无法解析: {p}", details=[str(e)]) from e
    default_name = p.stem.split("@", 1)[0]
    desc = parse_descriptor(data, default_name=default_name, source_file=str(p))
    logger.debug("已解析配方: %s (%s)", desc.label, p)
    return desc
