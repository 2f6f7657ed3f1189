"""FormulaInstaller 单元测试 — 真实子进程执行假的 acltool 构建"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import pytest
import yaml

from formulary.core.exceptions import BuildError, IntegrityError, TestError, ValidationError
from formulary.core.fetcher import ArchiveFetcher
from formulary.services.installer import RECEIPT_NAME, FormulaInstaller
from formulary.utils.shell import CommandResult


def _digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


class _RecordingExecutor:
    """记录调用参数，总是成功；install 步骤顺带生成可执行文件"""

    def __init__(self) -> None:
        self.calls: list[dict] = []

    def execute(self, argv, *, cwd=".", env=None, timeout=None) -> CommandResult:
        self.calls.append({"argv": argv, "cwd": cwd, "env": env, "timeout": timeout})
        prefix = Path(env["PREFIX"])
        (prefix / "bin").mkdir(parents=True, exist_ok=True)
        tool = prefix / "bin" / env["FORMULARY_NAME"]
        tool.write_text("#!/bin/sh\n", encoding="utf-8")
        tool.chmod(0o755)
        return CommandResult(returncode=0, stdout="", stderr="")


class TestInstall:
    def test_install_and_test_v1_15(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        archive = build_archive(archive_dir, "1.15")
        desc = make_formula("1.15", sha256=_digest(archive))
        seed_cache(fetcher, desc, archive)
        prefix = tmp_path / "opt" / "tool"

        report = installer.install(desc, prefix)

        assert report.success
        assert report.verified is True
        tool = prefix / "bin" / "acltool"
        assert tool.is_file()
        assert [s["step"] for s in report.steps] == [
            "fetch", "verify", "extract", "install[0]", "install[1]",
            "link", "receipt", "test[0]",
        ]
        assert report.steps[-1]["command"] == f"{tool} lac ."
        assert report.active_options == frozenset({"readline"})

    def test_receipt_written(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        archive = build_archive(archive_dir)
        desc = make_formula(sha256=_digest(archive))
        seed_cache(fetcher, desc, archive)
        prefix = tmp_path / "prefix"
        installer.install(desc, prefix, without_options=["readline"])

        receipt = yaml.safe_load((prefix / RECEIPT_NAME).read_text(encoding="utf-8"))
        assert receipt["name"] == "acltool"
        assert receipt["version"] == "1.15"
        assert receipt["source"]["verified"] is True
        assert receipt["options"] == []

    def test_altered_archive_fails_before_install(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        archive = build_archive(archive_dir)
        desc = make_formula(sha256=_digest(archive))
        cached = seed_cache(fetcher, desc, archive)
        data = bytearray(cached.read_bytes())
        data[-1] ^= 0xFF
        cached.write_bytes(bytes(data))
        prefix = tmp_path / "prefix"

        with pytest.raises(IntegrityError):
            installer.install(desc, prefix)
        assert not prefix.exists()

    def test_missing_checksum_warns_and_proceeds(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, caplog: pytest.LogCaptureFixture,
        build_archive, make_formula, seed_cache,
    ) -> None:
        archive = build_archive(archive_dir, "1.16.3")
        desc = make_formula("1.16.3", test=[["{bin}/acltool", "lac", "-v", "."]])
        seed_cache(fetcher, desc, archive)

        with caplog.at_level(logging.WARNING):
            report = installer.install(desc, tmp_path / "prefix")

        assert report.success
        assert report.verified is False
        assert report.digest == _digest(archive)
        verify = next(s for s in report.steps if s["step"] == "verify")
        assert verify["status"] == "warning"
        assert "未声明 sha256" in caplog.text

    def test_missing_checksum_strict(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        desc = make_formula()
        seed_cache(fetcher, desc, build_archive(archive_dir))
        with pytest.raises(IntegrityError):
            installer.install(desc, tmp_path / "prefix", strict=True)

    def test_failing_install_step(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        archive = build_archive(archive_dir, install_script="#!/bin/sh\nexit 4\n")
        desc = make_formula()
        seed_cache(fetcher, desc, archive)
        with pytest.raises(BuildError, match=r"install\[1\]失败") as exc:
            installer.install(desc, tmp_path / "prefix")
        assert exc.value.returncode == 4
        assert exc.value.label == "install[1]"

    def test_missing_binary(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        archive = build_archive(archive_dir, install_script="#!/bin/sh\nexit 0\n")
        desc = make_formula()
        seed_cache(fetcher, desc, archive)
        with pytest.raises(BuildError, match="未找到可执行文件"):
            installer.install(desc, tmp_path / "prefix")

    def test_failing_test_step(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        desc = make_formula(test=[["{bin}/acltool", "bogus"]])
        seed_cache(fetcher, desc, build_archive(archive_dir))
        with pytest.raises(TestError) as exc:
            installer.install(desc, tmp_path / "prefix")
        assert exc.value.returncode == 2

    def test_skip_tests(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        desc = make_formula(test=[["{bin}/acltool", "bogus"]])
        seed_cache(fetcher, desc, build_archive(archive_dir))
        report = installer.install(desc, tmp_path / "prefix", run_tests=False)
        assert report.steps[-1] == {"step": "test", "status": "skipped"}

    def test_invalid_option_rejected_before_fetch(
        self, installer: FormulaInstaller, tmp_path: Path, make_formula,
    ) -> None:
        with pytest.raises(ValidationError):
            installer.install(make_formula(), tmp_path / "prefix", with_options=["openssl"])

    def test_build_dir_removed(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        desc = make_formula()
        seed_cache(fetcher, desc, build_archive(archive_dir))
        installer.install(desc, tmp_path / "prefix")
        assert list((tmp_path / "build").iterdir()) == []

    def test_keep_build(
        self, fetcher: ArchiveFetcher, archive_dir: Path, tmp_path: Path,
        build_archive, make_formula, seed_cache,
    ) -> None:
        installer = FormulaInstaller(fetcher, tmp_path / "build", keep_build=True)
        desc = make_formula()
        seed_cache(fetcher, desc, build_archive(archive_dir))
        installer.install(desc, tmp_path / "prefix")
        kept = list((tmp_path / "build").iterdir())
        assert len(kept) == 1
        assert kept[0].name.startswith("acltool-1.15-")


class TestVersionsIndependent:
    def test_two_versions_side_by_side(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        old_archive = build_archive(archive_dir, "1.15")
        new_archive = build_archive(archive_dir, "1.16.3")
        old = make_formula("1.15", sha256=_digest(old_archive))
        new = make_formula("1.16.3", test=[["{bin}/acltool", "lac", "-v", "."]])
        seed_cache(fetcher, old, old_archive)
        seed_cache(fetcher, new, new_archive)

        r_old = installer.install(old, tmp_path / "cellar" / "1.15")
        r_new = installer.install(new, tmp_path / "cellar" / "1.16.3")

        assert r_old.verified and not r_new.verified
        assert r_old.archive_path != r_new.archive_path
        assert (tmp_path / "cellar" / "1.15" / "bin" / "acltool").is_file()
        assert (tmp_path / "cellar" / "1.16.3" / "bin" / "acltool").is_file()


class TestStepContext:
    def test_placeholders_env_and_cwd(
        self, fetcher: ArchiveFetcher, archive_dir: Path, tmp_path: Path,
        build_archive, make_formula, seed_cache,
    ) -> None:
        executor = _RecordingExecutor()
        installer = FormulaInstaller(
            fetcher, tmp_path / "build", step_timeout=30, executor=executor,
        )
        desc = make_formula(install=[["./configure", "--prefix={prefix}"], "make install"])
        seed_cache(fetcher, desc, build_archive(archive_dir))
        prefix = tmp_path / "opt" / "tool"

        installer.install(desc, prefix)

        configure, make, test = executor.calls
        assert configure["argv"] == ["./configure", f"--prefix={prefix}"]
        assert Path(configure["cwd"]).name == "acltool-1.15"
        assert make["argv"] == ["make", "install"]
        assert configure["env"]["PREFIX"] == str(prefix)
        assert configure["env"]["FORMULARY_VERSION"] == "1.15"
        assert configure["timeout"] == 30
        assert test["argv"] == [str(prefix / "bin" / "acltool"), "lac", "."]
        assert test["env"]["PATH"].startswith(str(prefix / "bin"))

    def test_conditional_steps(
        self, fetcher: ArchiveFetcher, archive_dir: Path, tmp_path: Path,
        build_archive, make_formula, seed_cache,
    ) -> None:
        executor = _RecordingExecutor()
        installer = FormulaInstaller(fetcher, tmp_path / "build", executor=executor)
        desc = make_formula(install=[
            ["./configure", "--prefix={prefix}"],
            {"run": ["./configure", "--without-readline"], "without": "readline"},
            {"run": ["make", "install-readline"], "with": "readline"},
        ], test=[])
        seed_cache(fetcher, desc, build_archive(archive_dir))

        report = installer.install(desc, tmp_path / "prefix", without_options=["readline"])

        argvs = [c["argv"] for c in executor.calls]
        assert ["./configure", "--without-readline"] in argvs
        assert ["make", "install-readline"] not in argvs
        statuses = {s["step"]: s["status"] for s in report.steps}
        assert statuses["install[2]"] == "skipped"
        assert statuses["test"] == "skipped"


class TestTestOnly:
    def test_uninstalled_prefix(
        self, installer: FormulaInstaller, tmp_path: Path, make_formula,
    ) -> None:
        with pytest.raises(BuildError, match="未找到可执行文件"):
            installer.test(make_formula(), tmp_path / "empty")

    def test_after_install(
        self, installer: FormulaInstaller, fetcher: ArchiveFetcher,
        archive_dir: Path, tmp_path: Path, build_archive, make_formula, seed_cache,
    ) -> None:
        desc = make_formula()
        seed_cache(fetcher, desc, build_archive(archive_dir))
        prefix = tmp_path / "prefix"
        installer.install(desc, prefix, run_tests=False)
        report = installer.test(desc, prefix)
        assert report.success
        assert [s["step"] for s in report.steps] == ["test[0]"]
