"""
Tests for logging setup.
"""

import json
import logging

import pytest
import structlog

from workspace_snapshots.utils.config import LoggingConfig, configure_logging
from workspace_snapshots.utils.logging import (
    JSONFormatter,
    get_logger,
    log_function_call,
)


class TestLoggingSetup:

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root_logger = logging.getLogger()
        handlers = root_logger.handlers[:]
        level = root_logger.level
        yield
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(level)
        structlog.reset_defaults()

    def test_configure_logging_writes_json_files(self, tmp_path):
        config = LoggingConfig(level="debug", format="json", directory=tmp_path / "logs")

        result = configure_logging(config, enable_console=False)
        get_logger("workspace-snapshots.test").error("capture_failed", path="a.txt")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert result["log_dir"] == tmp_path / "logs"
        assert result["config"]["log_level"] == "DEBUG"
        log_file = tmp_path / "logs" / "workspace-snapshots.log"
        errors_file = tmp_path / "logs" / "workspace-snapshots-errors.log"
        assert log_file.exists()
        records = [json.loads(line) for line in errors_file.read_text().splitlines()]
        assert any("capture_failed" in r["message"] for r in records)

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
        record.snapshot_id = "s1"

        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "hello"
        assert data["snapshot_id"] == "s1"


class TestLogFunctionCall:

    @pytest.mark.asyncio
    async def test_wraps_coroutines(self):
        @log_function_call(get_logger("test"))
        async def add(a, b):
            return a + b

        assert await add(1, 2) == 3
        assert add.__name__ == "add"

    @pytest.mark.asyncio
    async def test_reraises(self):
        @log_function_call(get_logger("test"))
        async def broken():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await broken()

    def test_rejects_sync_functions(self):
        with pytest.raises(TypeError):
            @log_function_call(get_logger("test"))
            def sync():
                return 1
