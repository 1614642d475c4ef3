import time
import logging

import requests

from flow_types import BatchOutcome, OutcomeStatus

logger = logging.getLogger("Notifier")

ALERT_COOLDOWN = 300


class TelegramNotifier:
    """HTML Telegram alerts. Duplicate error alerts are suppressed for ALERT_COOLDOWN seconds."""

    def __init__(self, bot_token: str = "", chat_id: str = "", explorer_url: str = ""):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.explorer_url = explorer_url.rstrip("/")
        self._last_errors = {}

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send(self, msg: str, is_error: bool = False) -> bool:
        if not self.enabled:
            return False

        if is_error:
            error_key = msg[:100]
            now = time.time()
            if error_key in self._last_errors and (now - self._last_errors[error_key]) < ALERT_COOLDOWN:
                return False
            self._last_errors = {k: t for k, t in self._last_errors.items() if now - t < ALERT_COOLDOWN}
            self._last_errors[error_key] = now

        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            requests.post(url, json={"chat_id": self.chat_id, "text": msg, "parse_mode": "HTML"}, timeout=10)
            return True
        except requests.RequestException as e:
            logger.warning(f"⚠️ Telegram alert failed: {e}")
            return False

    def batch_outcome(self, network: str, outcome: BatchOutcome) -> bool:
        batch = outcome.batch
        if outcome.status == OutcomeStatus.SUBMITTED:
            link = f"\n🔗 <a href='{self.explorer_url}/tx/{outcome.tx_hash}'>Explorer</a>" if self.explorer_url else ""
            return self.send(
                f"🚀 <b>Liquidation Sent</b> ({network})\n"
                f"🪙 Token: <code>{batch.token}</code>\n"
                f"🌊 Flows: {len(batch)}\n"
                f"🧾 <code>{outcome.tx_hash}</code>{link}"
            )
        if outcome.status == OutcomeStatus.FAILED:
            return self.send(
                f"⚠️ <b>Liquidation Failed</b> ({network})\n"
                f"🪙 Token: <code>{batch.token}</code>\n"
                f"<code>{outcome.error}</code>",
                is_error=True,
            )
        return False
