"""Human-readable progress output for the deployment tools."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from rich.console import Console
from rich.text import Text

logger = logging.getLogger(__name__)

STYLES = {
    "green": "green",
    "red": "red",
    "yellow": "yellow",
    "blue": "blue",
    "bold": "bold",
    "reset": "",
}

# Progress lines are mirrored into the structured log at these levels
LOG_LEVELS = {
    "red": logging.ERROR,
    "yellow": logging.WARNING,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepConsole:
    """Prints colourised, optionally timestamped progress lines.

    Every line is also written to the ``deployguard.deploy`` logger so the
    rotating JSON log keeps the same story as the terminal.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        timestamps: bool = True,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.console = console or Console(highlight=False)
        self.timestamps = timestamps
        self._now = now

    def log(self, message: str, color: str = "reset") -> None:
        # Leading newlines become blank lines ahead of the timestamp
        body = message.lstrip("\n")
        for _ in range(len(message) - len(body)):
            self.console.print()
        message = body

        if self.timestamps:
            stamp = self._now().isoformat(timespec="milliseconds").replace("+00:00", "Z")
            message = f"[{stamp}] {message}"

        self.console.print(Text(message, style=STYLES.get(color, "")))
        logger.log(LOG_LEVELS.get(color, logging.INFO), message.strip())

    def rule(self, color: str = "blue", width: int = 50) -> None:
        self.console.print(Text("=" * width, style=STYLES.get(color, "")))

    def check_statuses(self, checks: object, healthy_value: str, indent: str = "  ") -> None:
        """Print one line per sub-check of a health or readiness payload."""
        if not isinstance(checks, dict):
            return
        for name, result in checks.items():
            status = result.get("status") if isinstance(result, dict) else None
            if status == healthy_value:
                marker, color = "✅", "green"
            elif status == "degraded":
                marker, color = "⚠️", "yellow"
            else:
                marker, color = "❌", "yellow" if healthy_value == "healthy" else "red"
            self.log(f"{indent}{marker} {name}: {status}", color)
