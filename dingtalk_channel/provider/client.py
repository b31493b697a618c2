"""DingTalk robot messaging over the open platform HTTP API.

Endpoints:
- token:  POST /v1.0/oauth2/accessToken
- direct: POST /v1.0/robot/oToMessages/batchSend
- group:  POST /v1.0/robot/groupMessages/send

Messages always use the ``sampleMarkdown`` template so tables and code blocks
render. Transient failures (5xx, 429, timeouts, connection errors) are retried
with tenacity; whatever is left after retries surfaces as ProviderRejected.
"""
from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from dingtalk_channel.config import Settings
from dingtalk_channel.core.retry import RetryableError, retry_async
from dingtalk_channel.domain.errors import ProviderRateLimited, ProviderRejected, TransientProviderError
from dingtalk_channel.domain.models import ChatType, Credentials, ProviderSendResult
from dingtalk_channel.observability.logging import get_logger

log = get_logger("provider")

TOKEN_PATH = "/v1.0/oauth2/accessToken"
DIRECT_PATH = "/v1.0/robot/oToMessages/batchSend"
GROUP_PATH = "/v1.0/robot/groupMessages/send"
MARKDOWN_MSG_KEY = "sampleMarkdown"
TITLE_MAX_LEN = 20
# refresh this many seconds before the provider says the token expires
TOKEN_EXPIRY_MARGIN_S = 300

_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp")
_MARKDOWN_NOISE_RE = re.compile(r"[#*_`>\[\]!]")


@dataclass
class _CachedToken:
    value: str
    expires_at: float


def markdown_title(text: str, default: str = "DingTalk") -> str:
    """Notification title for a markdown message: its first non-empty line, unformatted."""
    for line in text.splitlines():
        cleaned = _MARKDOWN_NOISE_RE.sub("", line).strip()
        if cleaned:
            return cleaned[:TITLE_MAX_LEN]
    return default


def media_markdown(media_url: str, caption: Optional[str] = None) -> str:
    path = urlparse(media_url).path
    name = path.rsplit("/", 1)[-1] or "attachment"
    if path.lower().endswith(_IMAGE_EXTENSIONS):
        body = f"![{name}]({media_url})"
    else:
        body = f"[{name}]({media_url})"
    if caption and caption.strip():
        return f"{caption.strip()}\n\n{body}"
    return body


class DingtalkApiClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None):
        self.settings = settings
        self._http = http or httpx.AsyncClient(base_url=settings.api_base_url, timeout=settings.http_timeout_s)
        self._tokens: dict[str, _CachedToken] = {}
        self._token_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Provider send capability
    # ------------------------------------------------------------------

    async def send_direct(self, credentials: Credentials, user_id: str, markdown: str) -> ProviderSendResult:
        body = {
            "robotCode": credentials.client_id,
            "userIds": [user_id],
            **self._markdown_message(markdown),
        }
        data = await self._post(credentials, DIRECT_PATH, body)
        return ProviderSendResult(message_id=self._message_id(data), conversation_id=user_id)

    async def send_group(self, credentials: Credentials, conversation_id: str, markdown: str) -> ProviderSendResult:
        body = {
            "robotCode": credentials.client_id,
            "openConversationId": conversation_id,
            **self._markdown_message(markdown),
        }
        data = await self._post(credentials, GROUP_PATH, body)
        return ProviderSendResult(message_id=self._message_id(data), conversation_id=conversation_id)

    async def send_media(
        self,
        credentials: Credentials,
        chat_type: ChatType,
        target_id: str,
        media_url: str,
        caption: Optional[str] = None,
    ) -> ProviderSendResult:
        if self.settings.probe_media:
            await self._probe(media_url)
        markdown = media_markdown(media_url, caption)
        if chat_type == ChatType.group:
            return await self.send_group(credentials, target_id, markdown)
        return await self.send_direct(credentials, target_id, markdown)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _markdown_message(self, markdown: str) -> dict[str, Any]:
        param = {"title": markdown_title(markdown), "text": markdown}
        return {"msgKey": MARKDOWN_MSG_KEY, "msgParam": json.dumps(param, ensure_ascii=False)}

    @staticmethod
    def _message_id(data: dict[str, Any]) -> str:
        return str(data.get("processQueryKey") or data.get("messageId") or "")

    async def _probe(self, media_url: str) -> None:
        try:
            resp = await self._http.head(media_url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise ProviderRejected(f"media url unreachable: {media_url}: {e}") from e
        if resp.status_code >= 400:
            raise ProviderRejected(f"media url unreachable: {media_url}", status_code=resp.status_code)

    async def access_token(self, credentials: Credentials) -> str:
        async with self._token_lock:
            cached = self._tokens.get(credentials.client_id)
            if cached and cached.expires_at > time.monotonic():
                return cached.value
            data = await self._call(
                "POST",
                TOKEN_PATH,
                json={"appKey": credentials.client_id, "appSecret": credentials.client_secret.get_secret_value()},
            )
            token = data.get("accessToken")
            if not token:
                raise ProviderRejected("DingTalk did not return an access token", code=data.get("code"))
            expire_in = float(data.get("expireIn") or 7200)
            self._tokens[credentials.client_id] = _CachedToken(
                value=token, expires_at=time.monotonic() + max(expire_in - TOKEN_EXPIRY_MARGIN_S, 0)
            )
            log.debug("access_token_refreshed", client_id=credentials.client_id, expire_in=expire_in)
            return token

    async def _post(self, credentials: Credentials, path: str, body: dict[str, Any]) -> dict[str, Any]:
        token = await self.access_token(credentials)
        return await self._call("POST", path, json=body, headers={"x-acs-dingtalk-access-token": token})

    async def _call(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return await retry_async(
                self._request,
                method,
                path,
                max_attempts=self.settings.send_max_attempts,
                min_wait=self.settings.send_min_wait_s,
                max_wait=self.settings.send_max_wait_s,
                **kwargs,
            )
        except RetryableError as e:
            raise ProviderRejected(f"DingTalk {path} failed: {e}", status_code=getattr(e, "status_code", None)) from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"timeout calling {path}") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"network error calling {path}: {e}") from e

        if resp.status_code == 429:
            raise ProviderRateLimited(f"rate limited on {path}")
        if resp.status_code >= 500:
            raise TransientProviderError(f"HTTP {resp.status_code} from {path}", status_code=resp.status_code)

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            raise ProviderRejected(
                data.get("message") or f"HTTP {resp.status_code} from {path}",
                status_code=resp.status_code,
                code=data.get("code"),
            )
        return data
