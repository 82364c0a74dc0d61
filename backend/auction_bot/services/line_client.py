"""Minimal LINE Messaging API client for reply and push messages."""

import base64
import hashlib
import hmac
import time
from typing import Dict, List, Optional

import httpx

from auction_bot.core.config import Settings, settings as default_settings
from auction_bot.core.logger import logger

# LINE accepts at most five message objects per request
MAX_MESSAGES = 5

def text_message(text: str) -> Dict[str, str]:
    return {"type": "text", "text": text}

def verify_signature(channel_secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check the X-Line-Signature header (base64 HMAC-SHA256 of the raw body)."""
    if not signature:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)

class LineMessagingClient:
    def __init__(self, config: Settings = None, client: httpx.AsyncClient = None):
        self.settings = config or default_settings
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.settings.line_api_base_url, timeout=10.0)
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.line_channel_token}"}

    async def _post(self, path: str, payload: dict):
        start = time.monotonic()
        response = await self.client.post(path, json=payload, headers=self._headers())
        duration_ms = int((time.monotonic() - start) * 1000)
        if response.status_code >= 400:
            logger.error(
                f"LINE API {path} returned {response.status_code}: {response.text[:200]}",
                extra={'url': path, 'status': response.status_code, 'duration_ms': duration_ms}
            )
        response.raise_for_status()

    async def reply(self, reply_token: str, messages: List[Dict]):
        await self._post("/v2/bot/message/reply", {
            "replyToken": reply_token,
            "messages": messages[:MAX_MESSAGES],
        })

    async def push(self, user_id: str, messages: List[Dict]):
        await self._post("/v2/bot/message/push", {
            "to": user_id,
            "messages": messages[:MAX_MESSAGES],
        })

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
