"""Tests for the run-log formatter in theme_balancer.config."""

import json
import logging
import sys

from theme_balancer.config import _RunLogFormatter


def _record(msg, exc_info=None, **extra):
    record = logging.LogRecord("theme_balancer", logging.INFO, __file__, 1, msg, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRunLogFormatter:
    def test_markup_stripped(self):
        entry = json.loads(_RunLogFormatter().format(_record("[bold]RUN 3[/bold] [red]failed[/red]")))
        assert entry["msg"] == "RUN 3 failed"
        assert entry["level"] == "INFO"
        assert "ts" in entry

    def test_context_fields(self):
        line = _RunLogFormatter().format(_record("done", run_id=4, record_id="s1", action="commit", extra_key="x"))
        entry = json.loads(line)
        assert entry["run_id"] == 4
        assert entry["record_id"] == "s1"
        assert entry["action"] == "commit"
        assert "status" not in entry
        assert "extra_key" not in entry

    def test_exception_summary(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            entry = json.loads(_RunLogFormatter().format(_record("oops", exc_info=sys.exc_info())))
        assert entry["error"] == "ValueError: bad row"

    def test_unicode_kept(self):
        line = _RunLogFormatter().format(_record("Übergang 家族"))
        assert "Übergang 家族" in line
