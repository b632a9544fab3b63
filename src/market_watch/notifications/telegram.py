"""Thesis component alerts and Telegram delivery.

Formats one message per newly completed thesis component and pushes it to
the Telegram Bot API when delivery is enabled.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import requests

from market_watch.config import TelegramConfig

logger = logging.getLogger(__name__)


MAX_QUEUED_MESSAGES = 200


@dataclass
class ThesisAlert:
    """Payload for one completed thesis component."""
    symbol: str
    pattern_id: str
    pattern_type: str
    component_name: str
    evidence: list[str]
    phase: str
    completion_percent: float
    target_price: float
    neckline_price: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "pattern_id": self.pattern_id,
            "pattern_type": self.pattern_type,
            "component_name": self.component_name,
            "evidence": list(self.evidence),
            "phase": self.phase,
            "completion_percent": self.completion_percent,
            "target_price": self.target_price,
            "neckline_price": self.neckline_price,
            "timestamp": self.timestamp.isoformat(),
        }


class AlertSink(Protocol):
    """Anything that can deliver a thesis alert."""

    def send_thesis_alert(self, alert: ThesisAlert) -> bool:
        ...


class TelegramNotifier:
    """Sends thesis alerts to a Telegram chat.

    Messages are always queued so they can be inspected; they are only
    posted to the Bot API when the config is enabled.
    """

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, config: Optional[TelegramConfig] = None, session: Optional[requests.Session] = None):
        """Initialize notifier.

        Args:
            config: Telegram configuration
            session: HTTP session, defaults to a new requests.Session
        """
        self.config = config or TelegramConfig()
        self._session = session or requests.Session()
        self._message_queue: deque[str] = deque(maxlen=MAX_QUEUED_MESSAGES)

    def format_thesis_alert(self, alert: ThesisAlert) -> str:
        """Format thesis alert message.

        Args:
            alert: Alert data

        Returns:
            Formatted message string
        """
        pattern_name = alert.pattern_type.replace("_", " ").title()
        evidence = "\n".join(f"• {line}" for line in alert.evidence) or "• (none)"
        return (
            f"📊 {alert.symbol}: {alert.component_name} completed\n"
            f"Pattern: {pattern_name}\n"
            f"Phase: {alert.phase}\n"
            f"Completion: {alert.completion_percent:.0f}%\n"
            f"Evidence:\n{evidence}\n"
            f"Target: ${alert.target_price:,.2f}\n"
            f"Breakout level: ${alert.neckline_price:,.2f}\n"
            f"Time: {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S')}"
        )

    def send_thesis_alert(self, alert: ThesisAlert) -> bool:
        """Queue and, when enabled, deliver a thesis alert.

        Returns:
            True if queued (and delivered when enabled), False if delivery failed
        """
        message = self.format_thesis_alert(alert)
        self._message_queue.append(message)
        if not self.config.enabled:
            return True
        return self._post(message)

    def _post(self, message: str) -> bool:
        url = self.API_URL.format(token=self.config.token)
        try:
            response = self._session.post(
                url,
                json={"chat_id": self.config.chat_id, "text": message},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error(f"Failed to send Telegram message: {e}")
            return False

    def get_pending_messages(self) -> list[str]:
        """Get pending messages in queue.

        Returns:
            List of pending messages (clears queue)
        """
        messages = list(self._message_queue)
        self._message_queue.clear()
        return messages
