"""源码包拉取器

职责:
- 下载源码包到 cache_dir/<name>/<version>/（已存在则直接复用）
- SHA-256 校验
- 解压到独立的构建目录
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tarfile
import urllib.error
import urllib.request
from pathlib import Path

from formulary.core.exceptions import FetchError, IntegrityError, ValidationError
from formulary.core.models import FormulaDescriptor
from formulary.utils.net import url_filename, validate_url_scheme

logger = logging.getLogger(__name__)


def sha256_file(path: str | Path) -> str:
    """计算文件的 SHA-256 十六进制摘要"""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


class ArchiveFetcher:
    """源码包拉取器 - 缓存优先 + 远程下载"""

    def __init__(self, cache_dir: str | Path, *, timeout: int = 300) -> None:
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout

    def cache_path(self, desc: FormulaDescriptor) -> Path:
        """源码包在缓存中的位置，不同版本互不干扰"""
        return self.cache_dir / desc.name / desc.version / url_filename(desc.source_url)

    def fetch(self, desc: FormulaDescriptor) -> Path:
        """下载源码包，返回本地路径

        Raises:
            FetchError: URL 协议不被允许、下载失败或超时
        """
        dest = self.cache_path(desc)
        if dest.is_file():
            logger.info("  缓存命中: %s", dest)
            return dest

        try:
            validate_url_scheme(desc.source_url, context=f"fetch {desc.label}")
        except ValidationError as e:
            raise FetchError(str(e)) from e

        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".incomplete")
        logger.info("  下载: %s", desc.source_url)
        try:
            with urllib.request.urlopen(  # nosec B310
                desc.source_url, timeout=self.timeout,
            ) as resp, open(partial, "wb") as f:
                shutil.copyfileobj(resp, f)
        except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
            partial.unlink(missing_ok=True)
            raise FetchError(f"下载失败: {desc.source_url} - {e}") from e
        partial.replace(dest)
        logger.info("  已保存: %s", dest)
        return dest

    def verify(
        self, desc: FormulaDescriptor, path: Path, *, strict: bool = False,
    ) -> tuple[bool, str]:
        """校验源码包摘要，返回 (是否已校验, 实际摘要)

        配方未声明 sha256 时不做校验，但会告警并打印实际摘要，
        便于确认后补进配方；strict=True 时直接拒绝。

        Raises:
            IntegrityError: 摘要不匹配，或 strict 模式下缺少 sha256
        """
        actual = sha256_file(path)
        if not desc.has_checksum:
            if strict:
                raise IntegrityError(
                    f"{desc.label} 未声明 sha256，拒绝安装 (实际摘要 {actual})"
                )
            logger.warning(
                "%s 未声明 sha256，跳过完整性校验。实际摘要: %s",
                desc.label, actual,
            )
            return False, actual
        if actual != desc.checksum:
            raise IntegrityError(
                f"校验和不匹配 {path.name}: 期望 {desc.checksum}, 实际 {actual}",
            )
        logger.info("  校验和通过: %s", path.name)
        return True, actual

    def extract(self, archive: Path, dest: Path) -> Path:
        """解压源码包到 dest，返回源码根目录

        归档内只有一个顶层目录时（GitHub archive 的常见布局），
        该目录即为源码根目录。

        Raises:
            FetchError: 不是可读的 tar 包
        """
        if dest.exists():
            shutil.rmtree(dest)
        dest.mkdir(parents=True)
        try:
            with tarfile.open(archive) as tf:
                tf.extractall(path=str(dest), filter="data")  # noqa: S202
        except (OSError, tarfile.TarError) as e:
            raise FetchError(f"解压失败 {archive}: {e}") from e

        entries = [p for p in dest.iterdir() if not p.name.startswith(".")]
        if len(entries) == 1 and entries[0].is_dir():
            root = entries[0]
        else:
            root = dest
        logger.info("  已解压: %s -> %s", archive.name, root)
        return root
