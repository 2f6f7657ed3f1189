"""formulary 命令行接口"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click
import yaml

from formulary import __version__
from formulary.core.auditor import audit
from formulary.core.exceptions import ExecutionError, FormulaError, ValidationError
from formulary.core.fetcher import sha256_file
from formulary.services.container import get_container, reset_container
from formulary.utils.logger import setup_logging_from_env


class _FormulaGroup(click.Group):
    """把业务异常转换为友好提示 + 退出码 1"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except FormulaError as e:
            click.echo(f"错误 [{e.code}]: {e}", err=True)
            if isinstance(e, ValidationError):
                for d in e.details:
                    click.echo(f"  - {d}", err=True)
            if isinstance(e, ExecutionError) and e.returncode is not None:
                click.echo(f"  步骤 {e.label} 退出码: {e.returncode}", err=True)
            ctx.exit(1)


def _svc() -> Any:
    return get_container()


@click.group(cls=_FormulaGroup)
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path", default="formulary.yml",
    help="配置文件路径（不存在则使用默认配置）",
)
def main(config_path: str) -> None:
    """formulary - 配方描述与安装运行时"""
    from formulary.core.config import init_config

    setup_logging_from_env()
    init_config(config_path)
    reset_container()


@main.command(name="list")
def list_formulas() -> None:
    """列出所有配方及版本"""
    items = _svc().registry.list_all()
    if not items:
        click.echo("没有可用的配方。")
        return
    for d in items:
        mark = "" if d["verified"] else "  [未校验]"
        click.echo(f"  {d['name']:16s} {d['version']:10s} {d['description']}{mark}")


@main.command()
@click.argument("name")
@click.option("--version", "version", default=None, help="指定版本（默认最新）")
def info(name: str, version: str | None) -> None:
    """显示配方详情"""
    desc = _svc().registry.get(name, version)
    click.echo(yaml.safe_dump(desc.to_dict(), allow_unicode=True, sort_keys=False).rstrip())
    if not desc.has_checksum:
        click.echo("警告: 未声明 sha256，安装时不会校验源码包完整性", err=True)


@main.command(name="audit")
@click.argument("name", required=False)
def audit_cmd(name: str | None) -> None:
    """检查配方描述问题（不指定名称则检查全部）"""
    registry = _svc().registry
    if name:
        targets = [registry.get(name, v) for v in registry.versions(name)]
    else:
        targets = sorted(registry.formulas.values(), key=lambda d: d.label)

    failed = 0
    for desc in targets:
        problems = audit(desc)
        if not problems:
            click.echo(f"  [OK  ] {desc.label}")
            continue
        failed += 1
        click.echo(f"  [FAIL] {desc.label}")
        for p in problems:
            click.echo(f"         - {p}")
    if failed:
        raise click.exceptions.Exit(1)


@main.command()
@click.argument("name")
@click.option("--version", "version", default=None, help="指定版本（默认最新）")
def fetch(name: str, version: str | None) -> None:
    """下载并校验源码包"""
    svc = _svc()
    desc = svc.registry.get(name, version)
    path = svc.fetcher.fetch(desc)
    verified, digest = svc.fetcher.verify(
        desc, path, strict=svc.config.require_checksum,
    )
    click.echo(f"就绪: {desc.label} -> {path}")
    click.echo(f"sha256: {digest}{'' if verified else '  (未校验)'}")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def checksum(path: Path) -> None:
    """计算本地文件的 sha256，用于补全配方"""
    click.echo(f"{sha256_file(path)}  {path}")


@main.command()
@click.argument("name")
@click.option("--version", "version", default=None, help="指定版本（默认最新）")
@click.option("--prefix", default=None, help="安装前缀（默认 <prefix_root>/<name>/<version>）")
@click.option("--with", "with_options", multiple=True, help="启用可选依赖（可多次指定）")
@click.option("--without", "without_options", multiple=True, help="禁用推荐依赖（可多次指定）")
@click.option("--skip-test", is_flag=True, help="安装后不执行 test 步骤")
@click.option("--strict", is_flag=True, help="缺少 sha256 时拒绝安装")
def install(
    name: str, version: str | None, prefix: str | None,
    with_options: tuple[str, ...], without_options: tuple[str, ...],
    skip_test: bool, strict: bool,
) -> None:
    """下载、构建、安装并测试配方"""
    svc = _svc()
    desc = svc.registry.get(name, version)
    target = prefix or svc.config.default_prefix(desc.name, desc.version)
    report = svc.installer.install(
        desc, target,
        with_options=with_options, without_options=without_options,
        run_tests=not skip_test, strict=strict or None,
    )
    for s in report.steps:
        click.echo(f"  {s['step']:12s} {s['status']}")
    if not report.verified:
        click.echo(f"警告: {desc.label} 未校验源码包，实际 sha256: {report.digest}", err=True)
    click.echo(f"已安装: {desc.label} -> {report.prefix} ({report.duration:.1f}s)")


@main.command(name="test")
@click.argument("name")
@click.option("--version", "version", default=None, help="指定版本（默认最新）")
@click.option("--prefix", default=None, help="安装前缀（默认 <prefix_root>/<name>/<version>）")
@click.option("--with", "with_options", multiple=True, help="启用可选依赖（可多次指定）")
@click.option("--without", "without_options", multiple=True, help="禁用推荐依赖（可多次指定）")
def test_cmd(
    name: str, version: str | None, prefix: str | None,
    with_options: tuple[str, ...], without_options: tuple[str, ...],
) -> None:
    """对已安装的配方执行 test 步骤"""
    svc = _svc()
    desc = svc.registry.get(name, version)
    target = prefix or svc.config.default_prefix(desc.name, desc.version)
    svc.installer.test(
        desc, target, with_options=with_options, without_options=without_options,
    )
    click.echo(f"测试通过: {desc.label}")


if __name__ == "__main__":
    main()
