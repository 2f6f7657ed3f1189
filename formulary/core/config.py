"""集中配置管理

支持从 YAML 文件加载 + 编程式覆盖，未知键保存在 extra 中。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from formulary.core.exceptions import ConfigError
from formulary.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

# 随包发布的配方目录
BUNDLED_FORMULA_DIR = str(Path(__file__).resolve().parent.parent / "formulas")


@dataclass
class Config:
    """全局配置"""

    # 目录
    formula_dir: str = BUNDLED_FORMULA_DIR
    cache_dir: str = ".formulary/cache"
    build_dir: str = ".formulary/build"
    prefix_root: str = ".formulary/cellar"

    # 执行
    step_timeout: int = 3600
    download_timeout: int = 300
    keep_build: bool = False

    # 完整性: 为 True 时缺少 sha256 的配方直接拒绝安装
    require_checksum: bool = False

    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "formulary.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置项无效: {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def default_prefix(self, name: str, version: str) -> str:
        """未显式指定 --prefix 时的安装前缀: <prefix_root>/<name>/<version>"""
        return str(Path(self.prefix_root) / name / version)

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "formulary.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
