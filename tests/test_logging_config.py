from __future__ import annotations

import json
import logging

import allure

from proofrail_agent.logging_config import JSONFormatter, KeyValueFormatter, configure_logging

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Logging"),
]


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="proofrail_agent.agent.scheduler",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Skipping job: %s",
        args=("fee too low",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_lifts_structured_fields() -> None:
    line = JSONFormatter().format(_record(job_id=7, reason="fee-too-low"))

    payload = json.loads(line)
    assert payload["msg"] == "Skipping job: fee too low"
    assert payload["level"] == "INFO"
    assert payload["job_id"] == 7
    assert payload["reason"] == "fee-too-low"
    assert "txid" not in payload


def test_key_value_formatter_appends_extras() -> None:
    line = KeyValueFormatter().format(_record(job_id=3, txid="0xabc"))

    assert line.endswith("job_id=3 txid=0xabc")
    assert "Skipping job: fee too low" in line


def test_configure_logging_replaces_its_own_handler() -> None:
    root = logging.getLogger()
    original_level = root.level
    try:
        configure_logging("debug")
        configure_logging("warning", json_output=True)

        tagged = [h for h in root.handlers if getattr(h, "_proofrail_handler", False)]
        assert len(tagged) == 1
        assert isinstance(tagged[0].formatter, JSONFormatter)
        assert root.level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            if getattr(handler, "_proofrail_handler", False):
                root.removeHandler(handler)
        root.setLevel(original_level)
