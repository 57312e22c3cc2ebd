"""Tests for deployment progress output."""

import logging
from datetime import datetime, timezone

from rich.console import Console

from deployguard.deploy.console import StepConsole


def make_console(buffer, timestamps=False):
    return StepConsole(
        console=Console(file=buffer, width=200, highlight=False),
        timestamps=timestamps,
        now=lambda: datetime(2026, 3, 1, 12, 30, 0, 123000, tzinfo=timezone.utc),
    )


class TestStepConsole:
    """Test line formatting and log mirroring."""

    def test_timestamped_line(self, console_output):
        make_console(console_output, timestamps=True).log("Deploying", "blue")

        assert console_output.getvalue() == "[2026-03-01T12:30:00.123Z] Deploying\n"

    def test_leading_newlines_become_blank_lines(self, console_output):
        make_console(console_output).log("\n\nStarting", "bold")

        assert console_output.getvalue() == "\n\nStarting\n"

    def test_errors_mirrored_to_log(self, console_output, caplog):
        with caplog.at_level(logging.INFO, logger="deployguard.deploy.console"):
            make_console(console_output).log("❌ Failed", "red")

        assert caplog.records[-1].levelno == logging.ERROR
        assert caplog.records[-1].getMessage() == "❌ Failed"

    def test_check_statuses(self, console_output):
        make_console(console_output).check_statuses(
            {"database": {"status": "healthy"}, "memory": {"status": "degraded"}},
            "healthy",
        )

        lines = console_output.getvalue().splitlines()
        assert lines == ["  ✅ database: healthy", "  ⚠️ memory: degraded"]

    def test_check_statuses_ignores_non_dict(self, console_output):
        make_console(console_output).check_statuses(None, "ready")

        assert console_output.getvalue() == ""
