from __future__ import annotations

import abc
from typing import Any, Optional

import httpx
from loguru import logger


TELEGRAM_API_BASE = "https://api.telegram.org"
PUSH_TITLE = "【天使动漫论坛任务推送】"
SEND_MESSAGE_TIMEOUT = 10  # seconds


class Notifier(metaclass=abc.ABCMeta):
    """Best-effort delivery of a result message.

    ``notify`` never raises: a delivery problem is logged and reported as
    ``False`` so it can never fail the task loop that triggered it.
    """

    @abc.abstractmethod
    async def send(self, text: str) -> None:
        raise NotImplementedError

    async def notify(self, text: str) -> bool:
        try:
            await self.send(text)
            return True
        except Exception as e:
            logger.error(f"Notification failed ({type(self).__name__}): {type(e).__name__}: {e}")
            return False

    async def aclose(self) -> None:
        return None


class LogNotifier(Notifier):
    """Used when no push target is configured."""

    async def send(self, text: str) -> None:
        logger.info(f"[notify] {text}")


class TelegramNotifier(Notifier):
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        title: str = PUSH_TITLE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.title = title
        self._client = httpx.AsyncClient(timeout=SEND_MESSAGE_TIMEOUT, transport=transport)

    async def send(self, text: str) -> None:
        url = f"{TELEGRAM_API_BASE}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": f"{self.title}\r\n{text}"}
        try:
            response = await self._client.post(url, data=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RuntimeError(
                f"Telegram API error: {e.response.status_code} - {e.response.text[:200]}"
            ) from e
        logger.debug(f"Telegram message sent to chat {self.chat_id}")

    async def aclose(self) -> None:
        await self._client.aclose()


def create_notifier(push: Any) -> Notifier:
    if push is not None and getattr(push, "enabled", False):
        return TelegramNotifier(push.bot_token, push.chat_id)
    logger.warning("Telegram push not configured, notifications will only be logged")
    return LogNotifier()
