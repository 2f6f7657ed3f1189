"""测试共享 fixture — 假的 acltool 源码包 + 配方工厂

源码包结构与 GitHub archive 一致（单个顶层目录）:

  acltool-<release>/
    configure     记录 --prefix 到 .prefix
    install.sh    把 acltool.sh 安装为 <prefix>/bin/acltool
    acltool.sh    只认 `lac` 子命令，其余退出码 2

配方的 install 步骤用 `sh configure` / `sh install.sh` 代替
`./configure` / `make install`，测试环境不依赖 make。
"""

from __future__ import annotations

import shutil
import tarfile
from pathlib import Path
from typing import Any

import pytest

from formulary.core.fetcher import ArchiveFetcher
from formulary.core.loader import parse_descriptor
from formulary.core.models import FormulaDescriptor
from formulary.services.installer import FormulaInstaller

CONFIGURE = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in
    --prefix=*) printf '%s' "${arg#--prefix=}" > .prefix ;;
  esac
done
"""

INSTALL = """#!/bin/sh
set -e
prefix="$(cat .prefix)"
mkdir -p "$prefix/bin"
cp acltool.sh "$prefix/bin/acltool"
chmod 755 "$prefix/bin/acltool"
"""

ACLTOOL = """#!/bin/sh
if [ "$1" != "lac" ]; then
  echo "acltool: unknown command: $1" >&2
  exit 2
fi
echo "# file: ."
"""


# =========================================================================
# 源码包 / 配方工厂 — 通过同名 fixture 提供给测试用例
# =========================================================================


def _build_archive(
    dest_dir: Path, release: str = "1.15", *, install_script: str = INSTALL,
) -> Path:
    """生成 v<release>.tar.gz，返回路径"""
    src = dest_dir / f"src-{release}" / f"acltool-{release}"
    src.mkdir(parents=True)
    for name, content in (
        ("configure", CONFIGURE),
        ("install.sh", install_script),
        ("acltool.sh", ACLTOOL),
    ):
        path = src / name
        path.write_text(content, encoding="utf-8")
        path.chmod(0o755)
    archive = dest_dir / f"v{release}.tar.gz"
    with tarfile.open(archive, "w:gz") as tf:
        tf.add(src, arcname=src.name)
    return archive


def _formula_data(release: str = "1.15", **overrides: Any) -> dict[str, Any]:
    """与随包配方同构的配方字典，install 步骤换成 sh 脚本

    Args:
        release:     写进 url 的发布标签 (v<release>.tar.gz)，版本号由此推导
        **overrides: 覆盖同名配方字段，如 version= / sha256= / test=
    """
    data: dict[str, Any] = {
        "name": "acltool",
        "desc": "Manipulate NFSv4/ZFS ACLs",
        "homepage": "https://github.com/ptrrkssn/acltool",
        "url": f"https://example.com/acltool/archive/v{release}.tar.gz",
        "depends_on": [{"readline": "recommended"}],
        "install": [
            ["sh", "configure", "--prefix={prefix}"],
            ["sh", "install.sh"],
        ],
        "test": [["{bin}/acltool", "lac", "."]],
    }
    data.update(overrides)
    return data


def _make_formula(release: str = "1.15", **overrides: Any) -> FormulaDescriptor:
    return parse_descriptor(_formula_data(release, **overrides))


def _seed_cache(fetcher: ArchiveFetcher, desc: FormulaDescriptor, archive: Path) -> Path:
    """把源码包放入缓存，使 fetch 命中缓存而不访问网络"""
    dest = fetcher.cache_path(desc)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(archive, dest)
    return dest


@pytest.fixture()
def build_archive():
    return _build_archive


@pytest.fixture()
def formula_data():
    return _formula_data


@pytest.fixture()
def make_formula():
    return _make_formula


@pytest.fixture()
def seed_cache():
    return _seed_cache


@pytest.fixture()
def fetcher(tmp_path: Path) -> ArchiveFetcher:
    return ArchiveFetcher(tmp_path / "cache")


@pytest.fixture()
def installer(tmp_path: Path, fetcher: ArchiveFetcher) -> FormulaInstaller:
    return FormulaInstaller(fetcher, tmp_path / "build", step_timeout=60)


@pytest.fixture()
def archive_dir(tmp_path: Path) -> Path:
    d = tmp_path / "archives"
    d.mkdir()
    return d
