from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Mapping, Optional

import requests

TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier:
    """Minimal Telegram Bot API adapter (dry-run friendly)."""

    def __init__(
        self,
        *,
        env: Optional[Mapping[str, str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        logger_name: str = __name__,
    ) -> None:
        env = os.environ if env is None else env
        self._logger = logging.getLogger(logger_name)
        self._token = env.get("TELEGRAM_BOT_TOKEN")
        self._chat_id = env.get("TELEGRAM_CHAT_ID")
        dry_env = str(env.get("NOTIFY_DRY_RUN", "false")).strip().lower()
        self._dry = dry_env == "true" or not (self._token and self._chat_id)
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def dry_run(self) -> bool:
        return self._dry

    def _dispatch(self, payload: Dict[str, Any]) -> bool:
        if self._dry:
            self._logger.info(json.dumps({"type": "NOTIFY_DRY_RUN", "payload": payload}, sort_keys=True))
            return True
        try:
            resp = self._session.post(
                f"{TELEGRAM_API}/bot{self._token}/sendMessage",
                json=payload,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            return True
        except requests.RequestException as exc:
            self._logger.warning("Telegram sendMessage failed: %s", exc)
            return False

    def send(self, text: str) -> bool:
        return self._dispatch({"chat_id": self._chat_id, "text": text})
