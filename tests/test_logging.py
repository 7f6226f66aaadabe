from __future__ import annotations

import json
import logging

from treasury_bot.common.logging import JsonLogFormatter, bind_tick_id, log_event


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(JsonLogFormatter(service="treasury-bot-test"))
        self.lines: list[dict] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(json.loads(self.format(record)))


def _logger() -> tuple[logging.Logger, _Capture]:
    logger = logging.getLogger("tests.structured")
    logger.handlers = []
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    capture = _Capture()
    logger.addHandler(capture)
    return logger, capture


def test_log_event_renders_fields_and_keeps_wei_exact() -> None:
    logger, capture = _logger()

    log_event(logger, "purchase.submitted", cost_wei=10**21 + 1, tx_hash=b"\xab\xcd", ok=True)

    [line] = capture.lines
    assert line["event_type"] == "purchase.submitted"
    assert line["severity"] == "INFO"
    assert line["service"] == "treasury-bot-test"
    assert line["cost_wei"] == "1000000000000000000001"
    assert line["tx_hash"] == "0xabcd"
    assert line["ok"] is True
    assert line["tick_id"] is None


def test_tick_id_is_bound_only_inside_the_block() -> None:
    logger, capture = _logger()

    with bind_tick_id("tick-1"):
        log_event(logger, "loop.tick", severity="WARNING")
    log_event(logger, "loop.stopped")

    assert [line["tick_id"] for line in capture.lines] == ["tick-1", None]
    assert capture.lines[0]["severity"] == "WARNING"
    assert capture.lines[0]["run_id"] == capture.lines[1]["run_id"]


def test_exceptions_are_attached() -> None:
    logger, capture = _logger()

    try:
        raise RuntimeError("rpc timeout")
    except RuntimeError:
        logger.exception("loop.step_failed step=%s", "tax_collection")

    [line] = capture.lines
    assert line["event_type"] == "log"
    assert line["message"] == "loop.step_failed step=tax_collection"
    assert "RuntimeError: rpc timeout" in line["exception"]
