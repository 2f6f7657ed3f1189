"""子进程执行工具

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
配方步骤一律以 argv 列表执行，不经过 shell 解释。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

from formulary.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议

    测试时可注入 mock 实现，无需 patch subprocess。
    """

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        try:
            r = subprocess.run(
                argv, capture_output=True, text=True,
                cwd=cwd, env=env, check=False, timeout=timeout,
            )
        except FileNotFoundError as e:
            # 与 shell 的 "command not found" 保持一致
            return CommandResult(returncode=127, stdout="", stderr=str(e))
        except PermissionError as e:
            return CommandResult(returncode=126, stdout="", stderr=str(e))
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor


def run_cmd(
    argv: list[str], *, cwd: str = ".",
    env: dict[str, str] | None = None,
    label: str = "cmd",
    timeout: int | None = None,
    error_cls: type[ExecutionError] = ExecutionError,
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行单条命令，非零退出或超时抛 error_cls

    Args:
        argv: 命令参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        label: 日志与错误信息中的步骤标签
        timeout: 超时秒数
        error_cls: 失败时抛出的异常类型（BuildError / TestError）
        executor: 指定执行器，默认使用全局执行器
    """
    runner = executor or get_executor()
    logger.info("  %s: %s (cwd=%s)", label, " ".join(argv), cwd)
    try:
        r = runner.execute(argv, cwd=cwd, env=env, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise error_cls(
            f"{label}超时 ({timeout}s): {' '.join(argv)}",
            label=label, argv=argv,
        ) from e
    if r.stdout:
        logger.debug("  %s stdout: %s", label, r.stdout[-2000:])
    if not r.success:
        raise error_cls(
            f"{label}失败 (rc={r.returncode}): {' '.join(argv)}: {r.stderr[-500:]}",
            label=label, argv=argv, returncode=r.returncode,
        )
    return r
