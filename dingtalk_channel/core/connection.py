"""Per-account gateway connection lifecycle.

The state machine is the pure ``transition`` function; ``GatewayConnection``
drives it against a provider connector:

    disconnected -> connecting -> connected -> reconnecting -> connecting ...
                                                 any state --cancel--> closed

``closed`` is terminal. The cancel signal is raced against every suspension
point (handshake, receive loop, backoff sleep), so cancelling never waits for
the provider.
"""
from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from dingtalk_channel.config import Settings
from dingtalk_channel.domain.errors import ConnectionLost, CredentialMissing, InvalidTransition
from dingtalk_channel.domain.models import ConnectionState, ConnectionStatus, Credentials, ResolvedAccount
from dingtalk_channel.observability import metrics
from dingtalk_channel.observability.logging import bind_account_id, get_logger
from dingtalk_channel.provider.base import GatewayConnector, ProviderSession
from dingtalk_channel.runtime import ChannelRuntime

T = TypeVar("T")
log = get_logger("connection")

EventHandler = Callable[[ResolvedAccount, dict[str, Any]], Awaitable[Any]]
StatusReporter = Callable[[ConnectionStatus], Any]


class ConnectionEvent(str, Enum):
    start = "start"
    handshake_ok = "handshake_ok"
    handshake_failed = "handshake_failed"
    dropped = "dropped"
    backoff_elapsed = "backoff_elapsed"
    cancel = "cancel"


_TRANSITIONS: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.disconnected, ConnectionEvent.start): ConnectionState.connecting,
    (ConnectionState.connecting, ConnectionEvent.handshake_ok): ConnectionState.connected,
    (ConnectionState.connecting, ConnectionEvent.handshake_failed): ConnectionState.reconnecting,
    (ConnectionState.connected, ConnectionEvent.dropped): ConnectionState.reconnecting,
    (ConnectionState.reconnecting, ConnectionEvent.backoff_elapsed): ConnectionState.connecting,
}


def transition(state: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    if event == ConnectionEvent.cancel:
        return ConnectionState.closed
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None


class ReconnectBackoff:
    """Exponential reconnect delay, non-decreasing up to ``max_delay``."""

    def __init__(self, min_delay: float = 1.0, max_delay: float = 60.0, factor: float = 2.0):
        if min_delay < 0 or max_delay < min_delay or factor < 1:
            raise ValueError("backoff needs 0 <= min_delay <= max_delay and factor >= 1")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.factor = factor
        self.attempts = 0
        self._current = min_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconnectBackoff":
        return cls(settings.reconnect_min_delay_s, settings.reconnect_max_delay_s, settings.reconnect_factor)

    def next_delay(self) -> float:
        delay = self._current
        self.attempts += 1
        self._current = min(self.max_delay, self._current * self.factor)
        return delay

    def reset(self) -> None:
        self.attempts = 0
        self._current = self.min_delay


class _CancelRequested(Exception):
    pass


class GatewayConnection:
    def __init__(
        self,
        runtime: ChannelRuntime,
        connector: GatewayConnector,
        on_event: EventHandler,
        status_reporter: Optional[StatusReporter] = None,
        backoff: Optional[ReconnectBackoff] = None,
    ):
        self.runtime = runtime
        self.connector = connector
        self.on_event = on_event
        self.status_reporter = status_reporter
        self.backoff = backoff or ReconnectBackoff.from_settings(runtime.settings)
        self.state = ConnectionState.disconnected
        self.account_id: str | None = None
        self.last_error: str | None = None
        self.last_connected_at: datetime | None = None
        self._report_tasks: set[asyncio.Future] = set()

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            account_id=self.account_id or "-",
            state=self.state,
            reconnect_attempts=self.backoff.attempts,
            last_error=self.last_error,
            last_connected_at=self.last_connected_at,
        )

    async def start(self, account: ResolvedAccount, cancel_signal: asyncio.Event) -> None:
        """Run the connection until ``cancel_signal`` is set. Returns in ``closed``."""
        if self.state != ConnectionState.disconnected:
            raise InvalidTransition(self.state, ConnectionEvent.start)
        creds = account.credentials()
        if creds is None:
            raise CredentialMissing(account.account_id)
        self.runtime.connections.claim(account.account_id, self)
        self.account_id = account.account_id

        with bind_account_id(account.account_id):
            try:
                self._apply(ConnectionEvent.start)
                await self._run(account, creds, cancel_signal)
            finally:
                self._apply(ConnectionEvent.cancel)
                self.runtime.connections.release(account.account_id, self)

    async def _run(self, account: ResolvedAccount, creds: Credentials, cancel_signal: asyncio.Event) -> None:
        while True:
            try:
                session = await self._until_cancelled(self.connector.connect(creds), cancel_signal)
            except _CancelRequested:
                return
            except Exception as e:
                self.last_error = str(e)
                log.warning("gateway_handshake_failed", error=str(e), error_type=type(e).__name__)
                self._apply(ConnectionEvent.handshake_failed)
            else:
                if cancel_signal.is_set():
                    await self._close_session(session)
                    return
                self._apply(ConnectionEvent.handshake_ok)
                try:
                    await self._until_cancelled(self._pump(account, session), cancel_signal)
                except _CancelRequested:
                    return
                except Exception as e:
                    self.last_error = str(e)
                    log.warning("gateway_connection_lost", error=str(e), error_type=type(e).__name__)
                finally:
                    await self._close_session(session)
                self._apply(ConnectionEvent.dropped)

            metrics.reconnects.labels(account_id=account.account_id).inc()
            delay = self.backoff.next_delay()
            log.info("gateway_reconnect_scheduled", delay_s=delay, attempt=self.backoff.attempts)
            if await self._sleep_or_cancel(delay, cancel_signal):
                return
            self._apply(ConnectionEvent.backoff_elapsed)

    async def _pump(self, account: ResolvedAccount, session: ProviderSession) -> None:
        async for payload in session.events():
            try:
                await self.on_event(account, payload)
            except Exception as e:
                log.exception("gateway_event_handler_failed", err=str(e))
        raise ConnectionLost("provider closed the stream")

    async def _until_cancelled(self, coro: Coroutine[Any, Any, T], cancel_signal: asyncio.Event) -> T:
        if cancel_signal.is_set():
            coro.close()
            raise _CancelRequested()
        op = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel_signal.wait())
        try:
            await asyncio.wait({op, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not op.done():
                op.cancel()
                await asyncio.gather(op, return_exceptions=True)
        if op.cancelled():
            if cancel_signal.is_set():
                raise _CancelRequested()
            # cancelled from inside the connector, not by us
            raise ConnectionLost("provider operation was cancelled")
        return op.result()

    @staticmethod
    async def _sleep_or_cancel(delay: float, cancel_signal: asyncio.Event) -> bool:
        try:
            await asyncio.wait_for(cancel_signal.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _close_session(self, session: ProviderSession) -> None:
        try:
            await session.close()
        except Exception as e:
            log.warning("gateway_session_close_failed", error=str(e))

    def _apply(self, event: ConnectionEvent) -> None:
        prev = self.state
        self.state = transition(prev, event)
        if self.state == ConnectionState.connected:
            self.backoff.reset()
            self.last_connected_at = datetime.now(timezone.utc)
            self.last_error = None
        for s in ConnectionState:
            metrics.connection_state.labels(account_id=self.account_id or "-", state=s.value).set(
                1 if s == self.state else 0
            )
        log.info("gateway_state_changed", from_state=prev.value, to_state=self.state.value)
        self._report()

    def _report(self) -> None:
        if self.status_reporter is None:
            return
        try:
            res = self.status_reporter(self.status())
            if inspect.isawaitable(res):
                task = asyncio.ensure_future(res)
                self._report_tasks.add(task)
                task.add_done_callback(self._report_done)
        except Exception as e:
            log.warning("status_reporter_failed", error=str(e))

    def _report_done(self, task: asyncio.Future) -> None:
        self._report_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("status_reporter_failed", error=str(task.exception()))
