"""logger.py 单元测试"""

from __future__ import annotations

import json
import logging

from formulary.utils.logger import JSONFormatter, reset_logging, setup_logging


class TestJSONFormatter:
    def test_extra_fields(self) -> None:
        record = logging.LogRecord(
            "formulary.services.installer", logging.ERROR, __file__, 10,
            "%s 失败", ("install[1]",), None,
        )
        record.formula = "acltool"
        record.step = "install[1]"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "ERROR"
        assert entry["message"] == "install[1] 失败"
        assert entry["formula"] == "acltool"
        assert entry["step"] == "install[1]"
        assert "version" not in entry


class TestSetupLogging:
    def test_replaces_handlers(self) -> None:
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging("DEBUG")
            setup_logging("WARNING", json_output=True)
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
        finally:
            reset_logging()
            for h in saved[0]:
                root.addHandler(h)
            root.setLevel(saved[1])
