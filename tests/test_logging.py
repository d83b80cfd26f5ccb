"""
Tests for log handler setup and request correlation ids.
"""

import json
import logging

from oauth_storage import LogConfig
from oauth_storage.logging_config import configure_logging, current_request_id, request_context


class TestConfigureLogging:

    def test_json_records_carry_request_id(self, capsys):
        configure_logging(LogConfig(level="INFO", format="json"))
        log = logging.getLogger("oauth_storage.storage")

        with request_context("req-42"):
            log.info("Client added: C1")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["msg"] == "Client added: C1"
        assert record["cid"] == "req-42"
        assert record["level"] == "INFO"
        assert record["logger"] == "oauth_storage.storage"

    def test_text_format_and_level(self, capsys):
        configure_logging(LogConfig(level="WARNING", format="text"))
        log = logging.getLogger("oauth_storage.schema")

        log.info("hidden")
        log.warning("shown")

        err = capsys.readouterr().err
        assert "hidden" not in err
        assert "WARNING - cid=- - shown" in err

    def test_reconfiguring_replaces_handlers(self):
        first = configure_logging(LogConfig())
        count = len(first.handlers)

        second = configure_logging(LogConfig())

        assert second is first
        assert len(second.handlers) == count

    def test_writes_to_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "oauth.log"
        configure_logging(LogConfig(level="DEBUG", format="json", file=str(log_file)))

        logging.getLogger("oauth_storage.connection").debug("Opening database connection")
        for handler in logging.getLogger("oauth_storage").handlers:
            handler.flush()

        record = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert record["msg"] == "Opening database connection"


class TestRequestContext:

    def test_context_is_restored(self):
        assert current_request_id() == "-"
        with request_context("outer"):
            with request_context("inner"):
                assert current_request_id() == "inner"
            assert current_request_id() == "outer"
        assert current_request_id() == "-"
