# flyer_bot/services/whatsapp.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import requests

DEFAULT_TIMEOUT = 10
MEDIA_TIMEOUT = 30


class WhatsAppClient:
    """
    Thin adapter over a WhatsApp HTTP gateway.

    The gateway owns the WhatsApp Web session (QR pairing, reconnects); this
    class only sends text and fetches media that the gateway already saved.
    """

    def __init__(self, api_base: str, api_key: str = "", session: str = "default") -> None:
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.session = session

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> bool:
        url = f"{self.api_base}/{endpoint}"
        try:
            resp = requests.post(url, json=payload, headers=self._headers(), timeout=DEFAULT_TIMEOUT)
        except requests.RequestException:
            # Send failures are not logged here: this client also feeds the
            # audit log channel, and logging from it would loop.
            return False
        return resp.ok

    def send_message(
        self,
        chat_id: str,
        text: str,
        reply_to: Optional[str] = None,
    ) -> bool:
        """
        Send a text message to a chat (contact or group id).

        reply_to quotes an earlier message id, the way `message.reply()`
        works in WhatsApp Web.
        """
        payload: Dict[str, Any] = {
            "session": self.session,
            "chatId": chat_id,
            "text": text,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        return self._post("api/sendText", payload)

    def download_media(self, url: str, mime_type: Optional[str] = None) -> Tuple[bytes, str]:
        """
        Download a media file announced in a webhook event.

        Returns (bytes, mimetype). Raises requests.RequestException on
        network or HTTP errors; the caller decides what that means.
        """
        if url.startswith("/"):
            url = f"{self.api_base}{url}"

        headers = {}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key

        resp = requests.get(url, headers=headers, timeout=MEDIA_TIMEOUT)
        resp.raise_for_status()

        content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
        return resp.content, (mime_type or content_type or "image/jpeg")
