"""Slack notifications for rollback events."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from .console import StepConsole

logger = logging.getLogger(__name__)

ALERT_TIMEOUT = 10.0  # seconds
FOOTER = "CFI Handbook Auto-Rollback System"


class AlertType(str, Enum):
    ROLLBACK_STARTED = "rollback_started"
    ROLLBACK_SUCCESS = "rollback_success"
    ROLLBACK_FAILED = "rollback_failed"


MESSAGES: Dict[AlertType, Dict[str, Any]] = {
    AlertType.ROLLBACK_STARTED: {
        "color": "warning",
        "title": "🚨 Automatic Rollback Started",
        "text": lambda data: f"Rollback initiated due to: {data.get('reason')}",
    },
    AlertType.ROLLBACK_SUCCESS: {
        "color": "good",
        "title": "✅ Automatic Rollback Successful",
        "text": lambda data: (
            f"Successfully rolled back to deployment: {data.get('rolled_back_to')}"
        ),
    },
    AlertType.ROLLBACK_FAILED: {
        "color": "danger",
        "title": "❌ Automatic Rollback Failed",
        "text": lambda data: f"Rollback failed with error: {data.get('error')}",
    },
}


def build_payload(
    alert_type: AlertType, data: Dict[str, Any], timestamp: datetime
) -> Dict[str, Any]:
    """Slack attachment payload for an alert."""
    message = MESSAGES[alert_type]
    fields = [
        {"title": "Environment", "value": data.get("environment"), "short": True},
        {
            "title": "Timestamp",
            "value": timestamp.isoformat().replace("+00:00", "Z"),
            "short": True,
        },
    ]
    if data.get("rolled_back_to"):
        fields.append(
            {"title": "Deployment", "value": data["rolled_back_to"], "short": True}
        )

    return {
        "attachments": [
            {
                "color": message["color"],
                "title": message["title"],
                "text": message["text"](data),
                "fields": fields,
                "footer": FOOTER,
            }
        ]
    }


class SlackNotifier:
    """Posts rollback alerts to an incoming webhook. Never raises."""

    def __init__(
        self,
        webhook_url: Optional[str],
        console: Optional[StepConsole] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.webhook_url = webhook_url
        self.console = console or StepConsole()
        self._transport = transport
        self._now = now

    async def send_alert(self, alert_type: AlertType, data: Dict[str, Any]) -> bool:
        """Deliver an alert.

        Returns:
            bool: True if the webhook accepted the payload
        """
        if not self.webhook_url:
            self.console.log("⚠️  No Slack webhook configured for alerts", "yellow")
            return False

        try:
            kind = AlertType(alert_type)
        except ValueError:
            logger.debug(f"Ignoring unknown alert type: {alert_type}")
            return False

        payload = build_payload(kind, data, self._now())
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=ALERT_TIMEOUT
            ) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except Exception as e:
            self.console.log(f"⚠️  Failed to send alert: {e}", "yellow")
            return False

        self.console.log(f"📢 Alert sent: {MESSAGES[kind]['title']}", "blue")
        return True
