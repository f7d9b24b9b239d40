# replay_pipeline/services/alerts.py
import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class WebhookAlertSink:
    """Posts ``{"content": message}`` to a chat webhook (Discord-style)."""

    def __init__(self, url: str, timeout: float = 5, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def send(self, message: str) -> bool:
        try:
            resp = self._session.post(self.url, json={"content": message}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send alert: {e}")
            return False
        return True


class LogAlertSink:
    """Used when no webhook is configured: the alert only reaches the logs."""

    def send(self, message: str) -> bool:
        logger.warning(f"ALERT (no webhook configured): {message}")
        return True


def make_alert_sink(url: str, timeout: float = 5):
    return WebhookAlertSink(url, timeout=timeout) if url else LogAlertSink()
