"""
Tests for logger configuration: module levels, file and jsonl handlers.
"""

import json
import logging

import pytest

from buildprep.logging import _parse_size, configure_logging, get_logger, get_metrics


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    configure_logging({})


class TestLogging:
    def test_adapter_tags_module(self, caplog):
        log = get_logger("fetcher")
        with caplog.at_level(logging.INFO, logger="buildprep"):
            log.info("hello")
        assert caplog.records[-1].build_module == "fetcher"

    def test_module_level_filter(self, caplog):
        configure_logging({"module_levels": {"licenses": "ERROR"}})
        with caplog.at_level(logging.INFO, logger="buildprep"):
            get_logger("licenses").warning("quiet")
            get_logger("variants").warning("loud")
        messages = [r.getMessage() for r in caplog.records]
        assert "loud" in messages
        assert "quiet" not in messages

    def test_file_handler(self, tmp_path):
        path = tmp_path / "logs" / "buildprep.log"
        configure_logging({"file": str(path)})
        get_logger("version").info("written to file")
        assert "[version] written to file" in path.read_text(encoding="utf-8")

    def test_jsonl_handler(self, tmp_path):
        path = tmp_path / "transparency.jsonl"
        configure_logging({"jsonl": {"enabled": True, "path": str(path)}})
        get_logger("buildsystem").warning("step done")
        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert records[-1]["module"] == "buildsystem"
        assert records[-1]["level"] == "WARNING"
        assert records[-1]["message"] == "step done"

    def test_verbose_enables_debug(self, tmp_path):
        path = tmp_path / "debug.log"
        configure_logging({"file": str(path), "file_level": "DEBUG", "level": "WARNING"}, verbose=True)
        get_logger("cli").debug("details")
        assert "details" in path.read_text(encoding="utf-8")

    def test_metrics_count_levels(self):
        before = get_metrics()["ERROR"]
        get_logger("cli").error("boom")
        assert get_metrics()["ERROR"] == before + 1

    @pytest.mark.parametrize("text,expected", [("10M", 10 * 1024 ** 2), ("512K", 512 * 1024), (2048, 2048), ("junk", None)])
    def test_parse_size(self, text, expected):
        assert _parse_size(text) == expected
