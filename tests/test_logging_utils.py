from __future__ import annotations

import logging

from anomaly_monitor.logging_utils import ExtraFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("anomaly_monitor", logging.INFO, __file__, 1, "Sent %s signal", ("volume",), None)
    record.__dict__.update(extra)
    return record


def test_extra_fields_are_appended_sorted():
    formatter = ExtraFormatter("%(levelname)s %(message)s")
    line = formatter.format(_record(symbol="BTCUSDT", kind="volume"))
    assert line == "INFO Sent volume signal | kind=volume symbol=BTCUSDT"


def test_values_with_spaces_are_quoted():
    formatter = ExtraFormatter("%(message)s")
    line = formatter.format(_record(path="/tmp/my state.json", symbol=""))
    assert line == "Sent volume signal | path='/tmp/my state.json' symbol=''"


def test_plain_record_is_untouched():
    formatter = ExtraFormatter("%(message)s")
    assert formatter.format(_record()) == "Sent volume signal"
