from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from .errors import UpstreamError

LOGGER = logging.getLogger("ghbridge.telegram")


def url_button(text: str, url: str) -> Dict[str, str]:
    return {"text": text, "url": url}


def callback_button(text: str, data: str) -> Dict[str, str]:
    return {"text": text, "callback_data": data}


def inline_keyboard(rows: Sequence[Sequence[Dict[str, str]]]) -> Dict[str, Any]:
    return {"inline_keyboard": [list(row) for row in rows]}


class TelegramClient:
    """Minimal Bot API client over a shared ``httpx.AsyncClient``."""

    def __init__(self, token: str, http_client: httpx.AsyncClient, base_url: str) -> None:
        self._token = token
        self._http = http_client
        self.base_url = base_url.rstrip("/")

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self._token:
            raise UpstreamError("Telegram bot token is not configured.")
        try:
            response = await self._http.post(
                f"{self.base_url}/bot{self._token}/{method}", json=payload
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Telegram {method} failed: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise UpstreamError(
                f"Telegram {method} failed: {description}", status=response.status_code
            )
        return body.get("result")

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        reply_markup: Optional[Dict[str, Any]] = None,
        parse_mode: Optional[str] = "Markdown",
        disable_web_page_preview: bool = False,
    ) -> Any:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if disable_web_page_preview:
            payload["disable_web_page_preview"] = True
        return await self._call("sendMessage", payload)

    async def answer_callback_query(
        self, callback_query_id: str, text: Optional[str] = None
    ) -> Any:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return await self._call("answerCallbackQuery", payload)

    async def set_webhook(self, url: str) -> Any:
        result = await self._call("setWebhook", {"url": url})
        LOGGER.info("Webhook set to %s", url)
        return result
