"""
Telegram alerts for operators.

Every alert is logged. When Telegram credentials are configured it is also
posted to the chat, from a worker thread on a background task so that a
slow Bot API never delays a detection cycle. Alerts that carry a dedup key
are throttled per key.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"

PRIORITY_MARKERS = {
    "critical": "🚨🚨🚨",
    "high": "⚠️",
    "normal": "",
    "low": "ℹ️",
}

SUMMARY_MAX_LINES = 20


@dataclass
class SentAlert:
    """Last delivery of one dedup key."""

    last_sent: float  # Unix timestamp
    count: int = 1


class AlertManager:
    """
    Sends operator alerts with per-key throttling.

    Usage:
        alerts = AlertManager(telegram_bot_token=token, telegram_chat_id=chat)

        alerts.send_critical("Healing failed", "restart of api failed: 503")
        alerts.send_warning("Anomaly", "Error rate 2.1x threshold", dedup_key="anomaly:error_rate")
        alerts.send_info("Recovered", "database reconnected")

        await alerts.drain()  # on shutdown
    """

    DEFAULT_COOLDOWN = 300

    def __init__(
        self,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        default_cooldown: int = DEFAULT_COOLDOWN,
        _telegram_api: Optional[Any] = None,  # For testing
    ) -> None:
        self._bot_token = telegram_bot_token
        self._chat_id = telegram_chat_id
        self._default_cooldown = default_cooldown
        self._telegram_api = _telegram_api

        self._sent: Dict[str, SentAlert] = {}
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        """False when alerts are only logged."""
        return self._telegram_api is not None or bool(self._bot_token and self._chat_id)

    def send_critical(self, title: str, message: str, dedup_key: Optional[str] = None) -> bool:
        return self.send_alert(title, message, dedup_key=dedup_key, priority="critical")

    def send_warning(self, title: str, message: str, dedup_key: Optional[str] = None) -> bool:
        return self.send_alert(title, message, dedup_key=dedup_key, priority="high")

    def send_info(self, title: str, message: str, dedup_key: Optional[str] = None) -> bool:
        return self.send_alert(title, message, dedup_key=dedup_key, priority="low")

    def send_recommendation_summary(self, recommendations: Iterable[Any]) -> bool:
        """Digest of newly stored recommendations. False when there are none."""
        lines = [f"- [{r.priority.value}] {r.type.value}: {r.title}" for r in recommendations]
        if not lines:
            return False

        body = "\n".join(
            [f"New recommendations: {len(lines)}"]
            + lines[:SUMMARY_MAX_LINES]
            + [f"Time: {datetime.now(timezone.utc).isoformat()}"]
        )
        return self.send_alert("📋 Recommendations", body)

    def send_alert(
        self,
        title: str,
        message: str,
        dedup_key: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        priority: str = "normal",
    ) -> bool:
        """
        Log an alert and queue its delivery.

        Returns False when dedup_key was already sent within the cooldown.
        """
        if dedup_key and self._throttled(dedup_key, cooldown_seconds or self._default_cooldown):
            logger.debug(f"Alert throttled: {dedup_key}")
            return False

        level = logging.ERROR if priority == "critical" else logging.INFO
        logger.log(level, f"ALERT [{priority}] {title}: {message.strip()[:200]}")

        marker = PRIORITY_MARKERS.get(priority, "")
        header = f"{marker} *{title}*" if marker else f"*{title}*"
        self._dispatch(f"{header}\n\n{message.strip()}")
        return True

    def _throttled(self, key: str, cooldown: float) -> bool:
        """True if key is inside its cooldown; otherwise records a send now."""
        now = time.time()
        previous = self._sent.get(key)
        if previous is None:
            self._sent[key] = SentAlert(last_sent=now)
            return False
        if now - previous.last_sent < cooldown:
            return True
        previous.last_sent = now
        previous.count += 1
        return False

    # =========================================================================
    # Delivery
    # =========================================================================

    def _dispatch(self, text: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (CLI, dashboard thread): deliver inline
            self._deliver(text)
            return

        task = loop.create_task(asyncio.to_thread(self._deliver, text))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for in-flight deliveries, up to timeout."""
        if not self._in_flight:
            return
        _, unfinished = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if unfinished:
            logger.warning(f"{len(unfinished)} alerts undelivered at shutdown")

    def _deliver(self, text: str) -> bool:
        """Post to Telegram. Errors are logged, never raised."""
        if self._telegram_api is not None:
            try:
                self._telegram_api.send_message(chat_id=self._chat_id, text=text, parse_mode="Markdown")
            except Exception as e:
                logger.error(f"Telegram client error: {e}")
                return False
            return True

        if not (self._bot_token and self._chat_id):
            return False

        try:
            response = requests.post(
                f"{TELEGRAM_API}/bot{self._bot_token}/sendMessage",
                json={"chat_id": self._chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=10,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Telegram delivery failed: {e}")
            return False
        return True

    # =========================================================================
    # Introspection
    # =========================================================================

    def clear_dedup_cache(self) -> None:
        self._sent.clear()

    def get_alert_stats(self) -> Dict[str, int]:
        return {
            "unique_alerts": len(self._sent),
            "total_sent": sum(s.count for s in self._sent.values()),
            "pending": len(self._in_flight),
        }
