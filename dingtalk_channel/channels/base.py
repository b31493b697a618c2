from __future__ import annotations
import abc
import asyncio
from typing import Any, Mapping, Optional
from dingtalk_channel.core.connection import StatusReporter
from dingtalk_channel.domain.models import SendResult

class ChannelAdapter(abc.ABC):
    """Channel adapter interface.

    Adapters are owned by the host and must be pure async. Configuration is
    passed in on every call as the host's plain mapping; the adapter keeps no
    copy of it.
    """
    channel_id: str

    @abc.abstractmethod
    async def start_account(
        self,
        cfg: Mapping[str, Any],
        account_id: Optional[str] = None,
        cancel_signal: Optional[asyncio.Event] = None,
        status_reporter: Optional[StatusReporter] = None,
    ) -> None:
        ...

    @abc.abstractmethod
    async def send_text(self, cfg: Mapping[str, Any], to: str, text: str, account_id: Optional[str] = None) -> SendResult:
        ...

    @abc.abstractmethod
    async def send_media(
        self,
        cfg: Mapping[str, Any],
        to: str,
        text: Optional[str] = None,
        media_url: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> SendResult:
        ...
