"""formulary 日志配置

普通文本与结构化 JSON 两种输出格式，由 CLI 入口统一初始化。
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

ENV_LOG_LEVEL = "FORMULARY_LOG_LEVEL"
ENV_LOG_JSON = "FORMULARY_LOG_JSON"


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于 CI 流水线消费

    额外字段（通过 logger.info(..., extra={"formula": ...}) 传入）
    会原样并入输出，用于按配方/步骤过滤日志。
    """

    _EXTRA_KEYS = ("formula", "version", "step")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        for key in self._EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR）
        json_output: 为 True 时使用 JSON 格式，否则使用人类可读格式

    重复调用会先清理已有 handlers，避免日志重复输出。
    """
    root = logging.getLogger()
    reset_logging()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
        handler.setFormatter(logging.Formatter(fmt))

    root.addHandler(handler)


def setup_logging_from_env() -> None:
    """按环境变量 FORMULARY_LOG_LEVEL / FORMULARY_LOG_JSON 配置日志"""
    setup_logging(
        level=os.getenv(ENV_LOG_LEVEL, "INFO"),
        json_output=os.getenv(ENV_LOG_JSON, "") == "1",
    )


def reset_logging() -> None:
    """清理根日志器上的所有 handlers"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
