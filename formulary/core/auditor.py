"""配方静态检查

规则参照 `brew audit` 中与描述文件本身相关的部分，只报告问题，不修改配方。
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from formulary.core.models import FormulaDescriptor

logger = logging.getLogger(__name__)

MAX_DESC_LENGTH = 80
_ARTICLES = ("a ", "an ", "the ")


def audit(desc: FormulaDescriptor) -> list[str]:
    """返回问题列表，空列表表示通过"""
    problems: list[str] = []

    if not desc.has_checksum:
        problems.append("缺少 sha256，源码包完整性无法校验")
    if not desc.homepage:
        problems.append("homepage 为空")
    elif urlparse(desc.homepage).scheme != "https":
        problems.append(f"homepage 应使用 https: {desc.homepage}")

    text = desc.description
    if not text:
        problems.append("desc 为空")
    else:
        if text.lower().startswith(_ARTICLES):
            problems.append("desc 不应以冠词开头")
        if text.endswith("."):
            problems.append("desc 不应以句号结尾")
        if len(text) > MAX_DESC_LENGTH:
            problems.append(f"desc 过长 ({len(text)} > {MAX_DESC_LENGTH} 字符)")

    if urlparse(desc.source_url).scheme != "https":
        problems.append(f"url 应使用 https: {desc.source_url}")
    if not desc.test_steps:
        problems.append("缺少 test 步骤")

    if problems:
        logger.debug("%s 检查发现 %d 个问题", desc.label, len(problems))
    return problems
