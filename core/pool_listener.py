from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import base58
from websockets import connect as ws_connect

logger = logging.getLogger("PoolListener")

OnSignature = Callable[[str], Awaitable[Any]]


class ListenerState(str, enum.Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class ListenerError(RuntimeError):
    pass


class FixedBackoff:
    def __init__(self, interval_s: float = 5.0) -> None:
        self.interval_s = float(interval_s)

    def delay(self, attempt: int) -> float:
        return self.interval_s


@dataclass
class SubscriptionHandle:
    ws: Any
    subscription_id: Optional[int] = None
    closed: bool = False


def is_valid_signature(sig: Any) -> bool:
    if not isinstance(sig, str) or len(sig) <= 20:
        return False
    try:
        return len(base58.b58decode(sig)) == 64
    except ValueError:
        return False


class MeteoraLogListener:
    """
    logsSubscribe(mentions=[program_id]) over websocket.
    - one live SubscriptionHandle at most; the old one is closed before reconnecting
    - reconnects forever after backoff.delay()
    - on_event errors are logged, never stop the stream
    """

    def __init__(
        self,
        rpc_ws: str,
        program_id: str,
        *,
        commitment: str = "confirmed",
        backoff: Optional[FixedBackoff] = None,
        connect: Callable[..., Awaitable[Any]] = ws_connect,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        ping_interval: float = 15.0,
    ) -> None:
        self.rpc_ws = rpc_ws
        self.program_id = (program_id or "").strip()
        self.commitment = commitment
        self.backoff = backoff or FixedBackoff()
        self._connect = connect
        self._sleep = sleep
        self.ping_interval = ping_interval

        self.state = ListenerState.IDLE
        self.handle: Optional[SubscriptionHandle] = None
        self.reconnects = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    async def _open(self) -> SubscriptionHandle:
        ws = await self._connect(self.rpc_ws, ping_interval=self.ping_interval, ping_timeout=self.ping_interval)
        handle = SubscriptionHandle(ws=ws)
        try:
            await ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": 1,
                "method": "logsSubscribe",
                "params": [
                    {"mentions": [self.program_id]},
                    {"commitment": self.commitment},
                ],
            }))
        except BaseException:
            await self._close(handle)
            raise
        return handle

    async def _close(self, handle: SubscriptionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        try:
            await handle.ws.close()
        except Exception as e:
            logger.debug("[LISTENER] close error: %s", e)

    async def _discard(self) -> None:
        h, self.handle = self.handle, None
        if h is not None:
            await self._close(h)

    async def _emit(self, on_event: OnSignature, sig: str) -> None:
        try:
            await on_event(sig)
        except Exception as e:
            logger.error("[LISTENER] on_event failed sig=%s err=%s", sig, e)

    async def _pump(self, handle: SubscriptionHandle, on_event: OnSignature) -> None:
        while self._running:
            raw = await handle.ws.recv()
            try:
                msg = json.loads(raw)
            except ValueError:
                logger.debug("[LISTENER] non-JSON frame skipped")
                continue

            if msg.get("error"):
                raise ListenerError(f"subscription error: {msg['error']}")
            if msg.get("id") == 1 and "result" in msg:
                handle.subscription_id = msg["result"]
                logger.info("[LISTENER] subscribed id=%s", handle.subscription_id)
                continue

            value = ((msg.get("params") or {}).get("result") or {}).get("value") or {}
            sig = value.get("signature")
            if not sig or value.get("err") is not None:
                continue
            if not is_valid_signature(sig):
                continue
            await self._emit(on_event, sig)

    async def run(self, on_event: OnSignature) -> None:
        if not self.program_id:
            raise ListenerError("program_id missing")

        self._running = True
        attempt = 0
        logger.info("[LISTENER] program_id=%s", self.program_id)

        try:
            while self._running:
                try:
                    await self._discard()
                    self.handle = await self._open()
                    self.state = ListenerState.CONNECTED
                    attempt = 0
                    logger.info("[LISTENER] WS connected: %s", self.rpc_ws)
                    await self._pump(self.handle, on_event)
                except Exception as e:
                    if self._running:
                        logger.warning("[LISTENER] WS error -> reconnect: %s", e)

                await self._discard()
                if not self._running:
                    break

                self.state = ListenerState.RECONNECTING
                self.reconnects += 1
                delay = self.backoff.delay(attempt)
                attempt += 1
                logger.info("[LISTENER] reconnecting in %.1fs (#%d)", delay, self.reconnects)
                await self._sleep(delay)
        finally:
            self._running = False
            await self._discard()
            self.state = ListenerState.STOPPED
            logger.info("[LISTENER] stopped")

    def subscribe(self, on_event: OnSignature) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(on_event))
        return self._task

    async def unsubscribe(self) -> None:
        self._running = False
        h = self.handle
        if h is not None and not h.closed and h.subscription_id is not None:
            try:
                await h.ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "logsUnsubscribe",
                    "params": [h.subscription_id],
                }))
            except Exception as e:
                logger.debug("[LISTENER] logsUnsubscribe failed: %s", e)
        await self._discard()
        self.state = ListenerState.STOPPED
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("[LISTENER] run loop did not exit, cancelled")
            except Exception as e:
                logger.error("[LISTENER] run loop ended with error: %s", e)
