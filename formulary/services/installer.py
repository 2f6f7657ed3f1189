"""配方安装服务 - 线性流水线

步骤顺序（任一步失败立即中止，不做重试，也不清理已写入前缀的文件）：
1. fetch   - 下载源码包（缓存优先）
2. verify  - SHA-256 校验；配方未声明摘要时告警
3. extract - 解压到独立构建目录
4. install - 依次执行 install 步骤，cwd 为源码根目录
5. link    - 确认 <prefix>/bin/<name> 存在且可执行
6. receipt - 写入安装回执
7. test    - 依次执行 test 步骤，cwd 为临时目录
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from formulary.core.exceptions import BuildError, TestError
from formulary.core.models import FormulaDescriptor, InstallReport, Step
from formulary.utils.shell import CommandExecutor, run_cmd
from formulary.utils.yaml_io import save_yaml

if TYPE_CHECKING:
    from formulary.core.fetcher import ArchiveFetcher
    from formulary.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

RECEIPT_NAME = "INSTALL_RECEIPT.yml"


class FormulaInstaller:
    """配方安装器，每次调用互相独立，不共享可变状态"""

    def __init__(
        self,
        fetcher: ArchiveFetcher,
        build_dir: str | Path,
        *,
        step_timeout: int | None = None,
        require_checksum: bool = False,
        keep_build: bool = False,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.build_dir = Path(build_dir)
        self.step_timeout = step_timeout
        self.require_checksum = require_checksum
        self.keep_build = keep_build
        self._executor = executor

    # ------------------------------------------------------------------
    # 步骤上下文
    # ------------------------------------------------------------------

    @staticmethod
    def placeholders(
        desc: FormulaDescriptor, prefix: Path, buildpath: Path,
    ) -> dict[str, str]:
        return {
            "prefix": str(prefix),
            "bin": str(prefix / "bin"),
            "lib": str(prefix / "lib"),
            "share": str(prefix / "share"),
            "name": desc.name,
            "version": desc.version,
            "buildpath": str(buildpath),
        }

    @staticmethod
    def step_env(desc: FormulaDescriptor, prefix: Path) -> dict[str, str]:
        """子进程环境: 继承当前进程，附加前缀相关变量，并把 <prefix>/bin 置于 PATH 最前"""
        bin_dir = str(prefix / "bin")
        return {
            **os.environ,
            "PREFIX": str(prefix),
            "FORMULARY_PREFIX": str(prefix),
            "FORMULARY_BIN": bin_dir,
            "FORMULARY_NAME": desc.name,
            "FORMULARY_VERSION": desc.version,
            "PATH": os.pathsep.join(
                p for p in (bin_dir, os.environ.get("PATH", "")) if p
            ),
        }

    def _run_steps(
        self,
        section: str,
        steps: tuple[Step, ...],
        desc: FormulaDescriptor,
        prefix: Path,
        cwd: Path,
        active: frozenset[str],
        report: InstallReport,
        error_cls: type[ExecutionError],
    ) -> None:
        values = self.placeholders(desc, prefix, cwd)
        env = self.step_env(desc, prefix)
        for i, step in enumerate(steps):
            label = f"{section}[{i}]"
            if not step.enabled(active):
                report.record(label, "skipped", command=str(step))
                logger.info("  %s: 跳过 (依赖选项未满足): %s", label, step)
                continue
            argv = step.render(values)
            try:
                run_cmd(
                    argv, cwd=str(cwd), env=env, label=label,
                    timeout=self.step_timeout, error_cls=error_cls,
                    executor=self._executor,
                )
            except error_cls as e:
                report.record(
                    label, "failed", command=" ".join(argv),
                    returncode=e.returncode,
                )
                logger.error(
                    "%s %s 失败: %s", desc.label, label, e,
                    extra={"formula": desc.name, "version": desc.version, "step": label},
                )
                raise
            report.record(label, "done", command=" ".join(argv))

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def install(
        self,
        desc: FormulaDescriptor,
        prefix: str | Path,
        *,
        with_options: tuple[str, ...] | list[str] = (),
        without_options: tuple[str, ...] | list[str] = (),
        run_tests: bool = True,
        strict: bool | None = None,
    ) -> InstallReport:
        """按流水线安装配方到 prefix，返回执行报告

        Raises:
            ValidationError: 依赖选项无效
            FetchError / IntegrityError / BuildError / TestError: 对应步骤失败
        """
        active = desc.resolve_options(with_options, without_options)
        prefix_path = Path(prefix).absolute()
        report = InstallReport(
            formula=desc, prefix=str(prefix_path), active_options=active,
        )
        strict = self.require_checksum if strict is None else strict
        start = time.monotonic()
        logger.info(
            "开始安装 %s -> %s (依赖选项: %s)",
            desc.label, prefix_path, ", ".join(sorted(active)) or "-",
        )

        # 1. fetch
        archive = self.fetcher.fetch(desc)
        report.archive_path = str(archive)
        report.record("fetch", archive=str(archive))

        # 2. verify
        verified, digest = self.fetcher.verify(desc, archive, strict=strict)
        report.verified, report.digest = verified, digest
        report.record(
            "verify", "done" if verified else "warning", sha256=digest,
            **({} if verified else {"detail": "配方未声明 sha256，未校验"}),
        )

        # 3. extract
        self.build_dir.mkdir(parents=True, exist_ok=True)
        work = Path(tempfile.mkdtemp(
            prefix=f"{desc.name}-{desc.version}-", dir=str(self.build_dir),
        ))
        try:
            source_root = self.fetcher.extract(archive, work / "src")
            report.record("extract", source_root=str(source_root))

            # 4. install
            prefix_path.mkdir(parents=True, exist_ok=True)
            self._run_steps(
                "install", desc.install_steps, desc, prefix_path,
                source_root, active, report, BuildError,
            )
        finally:
            if self.keep_build:
                logger.info("  保留构建目录: %s", work)
            else:
                shutil.rmtree(work, ignore_errors=True)

        # 5. link
        tool = self.check_binary(desc, prefix_path)
        report.record("link", binary=str(tool))

        # 6. receipt
        receipt = self.write_receipt(report)
        report.record("receipt", path=str(receipt))

        # 7. test
        if run_tests:
            self._test_into(desc, prefix_path, active, report)
        else:
            report.record("test", "skipped")

        report.duration = time.monotonic() - start
        logger.info("安装完成: %s (%.1fs)", desc.label, report.duration)
        return report

    @staticmethod
    def check_binary(desc: FormulaDescriptor, prefix: Path) -> Path:
        """确认 <prefix>/bin/<name> 存在且可执行"""
        tool = prefix / "bin" / desc.name
        if not tool.is_file() or not os.access(tool, os.X_OK):
            raise BuildError(
                f"{desc.label} 安装步骤完成，但未找到可执行文件: {tool}",
                label="link",
            )
        return tool

    @staticmethod
    def write_receipt(report: InstallReport) -> Path:
        """在前缀下写入安装回执，记录来源、摘要与依赖选项"""
        desc = report.formula
        path = Path(report.prefix) / RECEIPT_NAME
        save_yaml(path, {
            "name": desc.name,
            "version": desc.version,
            "source": {
                "url": desc.source_url,
                "sha256": report.digest,
                "verified": report.verified,
            },
            "options": sorted(report.active_options),
            "installed_at": datetime.now(timezone.utc).isoformat(),
        })
        return path

    # ------------------------------------------------------------------
    # 测试
    # ------------------------------------------------------------------

    def test(
        self,
        desc: FormulaDescriptor,
        prefix: str | Path,
        *,
        with_options: tuple[str, ...] | list[str] = (),
        without_options: tuple[str, ...] | list[str] = (),
    ) -> InstallReport:
        """对已安装的配方执行 test 步骤

        Raises:
            BuildError: 前缀下没有可执行文件（尚未安装）
            TestError: 任一测试步骤失败
        """
        active = desc.resolve_options(with_options, without_options)
        prefix_path = Path(prefix).absolute()
        report = InstallReport(
            formula=desc, prefix=str(prefix_path), active_options=active,
        )
        start = time.monotonic()
        self.check_binary(desc, prefix_path)
        self._test_into(desc, prefix_path, active, report)
        report.duration = time.monotonic() - start
        return report

    def _test_into(
        self,
        desc: FormulaDescriptor,
        prefix: Path,
        active: frozenset[str],
        report: InstallReport,
    ) -> None:
        if not desc.test_steps:
            report.record("test", "skipped", detail="配方未定义 test 步骤")
            logger.warning("%s 未定义 test 步骤", desc.label)
            return
        with tempfile.TemporaryDirectory(prefix=f"{desc.name}-test-") as tmp:
            self._run_steps(
                "test", desc.test_steps, desc, prefix,
                Path(tmp), active, report, TestError,
            )
        logger.info("测试通过: %s", desc.label)
