"""服务容器 — CLI 通过它获取注册表、拉取器和安装器

同一容器内的实例共享配置；不同容器之间互不影响。

用法:
    container = ServiceContainer()
    desc = container.registry.get("acltool")
    container.installer.install(desc, prefix="/opt/tool")
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from formulary.core.config import Config
    from formulary.core.fetcher import ArchiveFetcher
    from formulary.core.registry import FormulaRegistry
    from formulary.services.installer import FormulaInstaller

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from formulary.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def registry(self) -> FormulaRegistry:
        if "registry" not in self._instances:
            from formulary.core.registry import FormulaRegistry
            self._instances["registry"] = FormulaRegistry(self._config.formula_dir)
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> ArchiveFetcher:
        if "fetcher" not in self._instances:
            from formulary.core.fetcher import ArchiveFetcher
            self._instances["fetcher"] = ArchiveFetcher(
                self._config.cache_dir, timeout=self._config.download_timeout,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def installer(self) -> FormulaInstaller:
        if "installer" not in self._instances:
            from formulary.services.installer import FormulaInstaller
            self._instances["installer"] = FormulaInstaller(
                self.fetcher,
                self._config.build_dir,
                step_timeout=self._config.step_timeout,
                require_checksum=self._config.require_checksum,
                keep_build=self._config.keep_build,
            )
        return self._instances["installer"]  # type: ignore[return-value]


_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（CLI 切换配置文件或测试时使用）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
