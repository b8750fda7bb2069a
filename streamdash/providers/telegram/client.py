from __future__ import annotations

import logging
from typing import Any, Iterable

import requests

BASE = "https://api.telegram.org"
DEFAULT_CHANNEL_NAME = "channel telegram"
CALL_TO_ACTION = "Join ke channel telegram untuk mendapatkan daily update!"

logger = logging.getLogger("telegram")


class TelegramError(RuntimeError):
    pass


def build_caption(title: str, links: Iterable[str], channel_name: str | None = None) -> str:
    link_lines = [link for link in links if link]
    if not link_lines:
        raise TelegramError("no_video_links")
    name = channel_name or DEFAULT_CHANNEL_NAME
    return f"{title}\n\n" + "\n".join(link_lines) + f"\n\n{CALL_TO_ACTION}\n\n{name}"


def explain_error(description: str | None) -> str:
    text = description or "telegram_post_failed"
    if "chat not found" in text:
        return (
            "Channel not found. Check that the channel id is correct (@channel_username or -100... numeric id) "
            "and that the bot is an administrator allowed to post."
        )
    if "bot was blocked" in text:
        return "Bot was blocked by the channel. Unblock the bot."
    if "not enough rights" in text:
        return "Bot does not have permission to post messages. Make it an administrator with post permission."
    return text


class TelegramClient:
    def __init__(self, bot_token: str, timeout: int = 30):
        self.bot_token = bot_token or ""
        self.timeout = timeout

    def _url(self, method: str) -> str:
        if not self.bot_token:
            raise TelegramError("telegram_bot_token_missing")
        return f"{BASE}/bot{self.bot_token}/{method}"

    def _check_result(self, res: requests.Response, method: str) -> str:
        try:
            payload = res.json()
        except ValueError:
            raise TelegramError(f"telegram_non_json_response: {method} status={res.status_code}")
        if not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description") if isinstance(payload, dict) else None
            logger.warning("telegram_call_failed method=%s description=%s", method, description)
            raise TelegramError(explain_error(description))
        result = payload.get("result") or {}
        message_id = result.get("message_id") if isinstance(result, dict) else None
        if message_id is None:
            raise TelegramError("telegram_no_message_id")
        return str(message_id)

    def send_message(self, chat_id: str, text: str) -> str:
        url = self._url("sendMessage")
        try:
            res = requests.post(
                url,
                json={"chat_id": chat_id.strip(), "text": text, "parse_mode": "Markdown"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TelegramError(f"telegram_unreachable: {exc.__class__.__name__}") from exc
        return self._check_result(res, "sendMessage")

    def send_photo(self, chat_id: str, caption: str, photo: bytes, filename: str = "photo.jpg", content_type: str | None = None) -> str:
        url = self._url("sendPhoto")
        files: dict[str, Any] = {"photo": (filename, photo, content_type or "application/octet-stream")}
        try:
            res = requests.post(
                url,
                data={"chat_id": chat_id.strip(), "caption": caption, "parse_mode": "Markdown"},
                files=files,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TelegramError(f"telegram_unreachable: {exc.__class__.__name__}") from exc
        return self._check_result(res, "sendPhoto")

    def post(self, chat_id: str, caption: str, photo: bytes | None = None, filename: str = "photo.jpg", content_type: str | None = None) -> str:
        """sendPhoto when an image is attached, sendMessage otherwise. Returns the message id."""
        if not chat_id or not chat_id.strip():
            raise TelegramError("telegram_channel_id_missing")
        if photo:
            return self.send_photo(chat_id, caption, photo, filename=filename, content_type=content_type)
        return self.send_message(chat_id, caption)
