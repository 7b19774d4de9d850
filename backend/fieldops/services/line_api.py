"""LINE Messaging API client（httpx）：reply / profile / message content / loading"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from fieldops.config import settings

logger = logging.getLogger(__name__)

MAX_MESSAGES_PER_CALL = 5


class LineApiError(RuntimeError):
    def __init__(self, action: str, status_code: int, detail: str = ""):
        self.action = action
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"LINE {action} failed: {status_code}")


class LineApiClient:
    def __init__(
        self,
        access_token: Optional[str] = None,
        api_base: Optional[str] = None,
        data_api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token if access_token is not None else (settings.line_channel_access_token or "")
        self.api_base = (api_base or settings.line_api_base).rstrip("/")
        self.data_api_base = (data_api_base or settings.line_data_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.line_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )

    @staticmethod
    def _check(resp: httpx.Response, action: str) -> None:
        if resp.status_code >= 400:
            detail = (resp.text or "").strip()
            if len(detail) > 500:
                detail = detail[:500] + "..."
            logger.warning("LINE %s failed: status=%s body=%s", action, resp.status_code, detail)
            raise LineApiError(action, resp.status_code, detail)

    async def reply(self, reply_token: str, messages: List[Dict[str, Any]]) -> None:
        """一次最多 5 則，超過的捨棄"""
        if not reply_token or not messages:
            return
        payload = {"replyToken": reply_token, "messages": messages[:MAX_MESSAGES_PER_CALL]}
        async with self._client() as client:
            resp = await client.post(f"{self.api_base}/message/reply", json=payload)
        self._check(resp, "reply")

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(f"{self.api_base}/profile/{user_id}")
        self._check(resp, "get profile")
        return resp.json()

    async def get_message_content(self, message_id: str) -> Tuple[bytes, str]:
        """回傳 (內容 bytes, Content-Type)"""
        async with self._client() as client:
            resp = await client.get(f"{self.data_api_base}/message/{message_id}/content")
        self._check(resp, "get content")
        return resp.content, resp.headers.get("Content-Type") or "application/octet-stream"

    async def show_loading(self, chat_id: str, loading_seconds: int = 5) -> None:
        """載入動畫失敗不影響主流程，只記 log"""
        payload = {"chatId": chat_id, "loadingSeconds": min(loading_seconds, 60)}
        try:
            async with self._client() as client:
                resp = await client.post(f"{self.api_base}/chat/loading/start", json=payload)
        except httpx.HTTPError as e:
            logger.warning("LINE show loading failed: %s", e)
            return
        if resp.status_code >= 400:
            logger.warning("LINE show loading failed: status=%s", resp.status_code)
