"""config.py 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

import formulary.core.config as cfgmod
from formulary.core.config import BUNDLED_FORMULA_DIR, Config, get_config, init_config
from formulary.core.exceptions import ConfigError


class TestConfig:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        cfg = Config.from_file(str(tmp_path / "nope.yml"))
        assert cfg.formula_dir == BUNDLED_FORMULA_DIR
        assert cfg.require_checksum is False

    def test_known_and_extra_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "formulary.yml"
        path.write_text(
            "cache_dir: /var/cache/formulary\n"
            "require_checksum: true\n"
            "mirror: https://mirror.example.com\n",
            encoding="utf-8",
        )
        cfg = Config.from_file(str(path))
        assert cfg.cache_dir == "/var/cache/formulary"
        assert cfg.require_checksum is True
        assert cfg.extra == {"mirror": "https://mirror.example.com"}

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "formulary.yml"
        path.write_text("cache_dir: [oops\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="配置文件无效"):
            Config.from_file(str(path))

    def test_default_prefix(self) -> None:
        cfg = Config(prefix_root="/opt/cellar")
        assert cfg.default_prefix("acltool", "1.15") == str(Path("/opt/cellar/acltool/1.15"))

    def test_init_and_get(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cfgmod, "_current", None)
        path = tmp_path / "formulary.yml"
        path.write_text("step_timeout: 60\n", encoding="utf-8")
        cfg = init_config(str(path))
        assert get_config() is cfg
        assert cfg.step_timeout == 60
