"""
WebSocket push channel.

Wire protocol (JSON text frames):

    -> {"type": "subscribe", "event": name, "bundle": {...directive...}}
    <- {"type": "subscribed", "subscription_id": id}
    <- {"type": "event", "event": name, "payload": entry | [entry, ...] | null}
    <- {"type": "error", "message": text}
    -> {"type": "unsubscribe", "subscription_id": id}

Each subscription owns its own connection, so releasing the handle closes the
socket and at most one connection exists per live subscription.
"""

import asyncio
import json
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from streamsync.errors import SubscriptionError
from streamsync.push.channel import (
    BundleDirective,
    DataCallback,
    ErrorCallback,
    Notification,
)

logger = logging.getLogger(__name__)


class WebSocketSubscription:
    """Live subscription backed by one WebSocket connection."""

    def __init__(self, connection: Any, subscription_id: str | None):
        self.connection = connection
        self.subscription_id = subscription_id
        self.closed = False
        self._reader: asyncio.Task | None = None

    async def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True

        if self._reader and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass

        try:
            await self.connection.send(json.dumps({
                "type": "unsubscribe",
                "subscription_id": self.subscription_id,
            }))
        except ConnectionClosed:
            pass
        await self.connection.close()
        logger.debug(f"Unsubscribed {self.subscription_id}")


class WebSocketPushChannel:
    """
    Push channel over a WebSocket endpoint.

    Example:
        channel = WebSocketPushChannel("wss://streams.example.net/ws")
        sub = await channel.subscribe("EarthquakeDetected", directive, on_data, on_error)
        ...
        await sub.unsubscribe()
    """

    def __init__(
        self,
        url: str,
        open_timeout: float = 10.0,
        ping_interval: float | None = 20.0,
    ):
        self.url = url
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval

    async def subscribe(
        self,
        event_name: str,
        directive: BundleDirective,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> WebSocketSubscription:
        try:
            connection = await websockets.connect(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise SubscriptionError(f"Cannot connect to {self.url}: {e}") from e

        try:
            subscription_id = await self._handshake(connection, event_name, directive)
        except BaseException as e:
            await connection.close()
            if isinstance(e, (ConnectionClosed, ValueError)):
                raise SubscriptionError(f"Subscribe handshake failed: {e}") from e
            raise

        subscription = WebSocketSubscription(connection, subscription_id)
        subscription._reader = asyncio.create_task(
            self._read_loop(subscription, event_name, directive, on_data, on_error)
        )
        logger.info(f"Subscribed to {event_name} ({directive.kind.value}) as {subscription_id}")
        return subscription

    async def _handshake(
        self,
        connection: Any,
        event_name: str,
        directive: BundleDirective,
    ) -> str | None:
        await connection.send(json.dumps({
            "type": "subscribe",
            "event": event_name,
            "bundle": directive.to_wire(),
        }))
        message = json.loads(await connection.recv())
        if not isinstance(message, dict):
            raise ValueError("ack is not an object")
        if message.get("type") == "error":
            raise SubscriptionError(f"Subscription rejected: {message.get('message')}")
        if message.get("type") != "subscribed":
            raise ValueError(f"unexpected ack type {message.get('type')!r}")
        return message.get("subscription_id")

    async def _read_loop(
        self,
        subscription: WebSocketSubscription,
        event_name: str,
        directive: BundleDirective,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            async for raw in subscription.connection:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring non-JSON frame on push channel")
                    continue
                if not isinstance(message, dict):
                    continue

                kind = message.get("type")
                if kind == "event" and message.get("event", event_name) == event_name:
                    on_data(Notification.from_wire(
                        event_name,
                        directive,
                        message.get("payload"),
                        subscription.subscription_id,
                    ))
                elif kind == "error":
                    on_error(SubscriptionError(f"Push channel error: {message.get('message')}"))
                    return
        except ConnectionClosed as e:
            if not subscription.closed:
                on_error(SubscriptionError(f"Push channel closed: {e}"))
            return

        if not subscription.closed:
            on_error(SubscriptionError("Push channel closed by server"))
