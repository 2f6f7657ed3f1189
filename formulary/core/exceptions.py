"""统一异常体系

所有业务异常继承 FormulaError，替代散落的 ValueError / RuntimeError。
CLI 层据此输出 `错误 [CODE]: message` 形式的友好提示。

异常分类:
  - FetchError:     源码包不可达或无法解压
  - IntegrityError: 校验和不匹配，或严格模式下缺少校验和
  - BuildError:     安装步骤返回非零
  - TestError:      测试步骤返回非零
"""

from __future__ import annotations


class FormulaError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(FormulaError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(FormulaError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class FormulaNotFoundError(FormulaError):
    """指定的配方或版本不存在"""

    code = "FORMULA_NOT_FOUND"


class FetchError(FormulaError):
    """源码包下载或解压失败"""

    code = "FETCH_ERROR"


class IntegrityError(FormulaError):
    """源码包完整性校验失败"""

    code = "INTEGRITY_ERROR"


class ExecutionError(FormulaError):
    """命令执行失败（非零退出或超时）"""

    code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        label: str = "",
        argv: list[str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.label = label
        self.argv = argv or []
        self.returncode = returncode


class BuildError(ExecutionError):
    """安装步骤失败"""

    code = "BUILD_ERROR"


class TestError(ExecutionError):
    """测试步骤失败"""

    code = "TEST_ERROR"
    __test__ = False  # pytest 不要把它当测试类收集
