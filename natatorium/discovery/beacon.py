"""Heartbeat beacon built on the discovery transport.

A beacon announces a local payload as a ``hello`` event every ``interval``
seconds and turns every ``hello`` it hears from another instance into a
*peer sighting*: the sender's payload augmented in place with

- ``lastSeen``  — receive time (epoch milliseconds)
- ``address``   — UDP source address
- ``port``      — UDP source port
- ``hostName``  — sender's host name, from the envelope
- ``id``        — sender's instance id

Sightings are handed to ``helloReceived`` handlers and not kept.

The local payload's ``timestamp`` is taken once, when the beacon is built,
and is not refreshed on each heartbeat.

``stop()`` only cancels the heartbeat loop.  The transport stays open until
the owner closes it with ``await beacon.transport.stop()``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from loguru import logger

from natatorium.config.schema import BeaconConfig, DiscoveryConfig
from natatorium.discovery.events import HELLO, HELLO_RECEIVED, EventDispatcher, Handler, NamedEvent
from natatorium.discovery.transport import DiscoveryTransport


def _now_ms() -> int:
    return int(time.time() * 1000)


class Beacon:
    """Periodic ``hello`` announcer and listener.

    Parameters
    ----------
    config:
        A ``BeaconConfig``; defaults announce every 2 s by broadcast on
        port 23456.
    data:
        Local payload to announce.  Copied; a ``timestamp`` is added.
    """

    def __init__(self, config: BeaconConfig | None = None, data: dict[str, Any] | None = None) -> None:
        self.config = config or BeaconConfig()
        self.local_data: dict[str, Any] = dict(data or {})
        self.local_data["timestamp"] = _now_ms()
        self._transport = DiscoveryTransport(self.config.transport)
        self._transport.on(HELLO, self.evaluate_hello)
        self._events = EventDispatcher("Discovery/Beacon")
        self._heartbeat: asyncio.Task | None = None

    @classmethod
    async def launch(
        cls,
        config: BeaconConfig | DiscoveryConfig | int | None = None,
        data: dict[str, Any] | None = None,
    ) -> Beacon:
        """Build and start a beacon from a config, a transport config or a port."""
        if isinstance(config, int):
            config = BeaconConfig(transport=DiscoveryConfig(port=config))
        elif isinstance(config, DiscoveryConfig):
            config = BeaconConfig(transport=config)
        beacon = cls(config, data)
        await beacon.start()
        return beacon

    @property
    def transport(self) -> DiscoveryTransport:
        return self._transport

    @property
    def instance_id(self) -> str:
        return self._transport.instance_id

    # -- handler registration ------------------------------------------------

    def on_hello_received(self, handler: Handler) -> None:
        """Register a callback invoked with every peer-sighting dict."""
        self._events.on(HELLO_RECEIVED, handler)

    def on_error(self, handler: Handler) -> None:
        self._transport.on_error(handler)

    # -- lifecycle -----------------------------------------------------------

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    async def start(self) -> None:
        """Start the transport, then the heartbeat.

        The first ``hello`` goes out one interval after start.
        """
        await self._transport.start()
        if not self.heartbeat_running:
            self._heartbeat = asyncio.create_task(
                self._heartbeat_loop(), name=f"beacon-{self.instance_id[:8]}"
            )
        logger.info(
            "[Discovery/Beacon] started: iid={} interval={}s",
            self.instance_id, self.config.interval,
        )

    def stop(self) -> None:
        """Cancel the heartbeat.  The transport is left running."""
        if self._heartbeat is not None and not self._heartbeat.done():
            self._heartbeat.cancel()
        self._heartbeat = None
        logger.info("[Discovery/Beacon] stopped: iid={}", self.instance_id)

    # -- heartbeat -----------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.interval)
            try:
                self.broadcast_hello()
            except Exception as exc:
                logger.warning("[Discovery/Beacon] hello not sent: {}", exc)

    def broadcast_hello(self) -> None:
        """Announce the local payload (with its original ``timestamp``)."""
        self._transport.send(HELLO, self.local_data)

    def evaluate_hello(self, event: NamedEvent) -> None:
        """Turn a received ``hello`` into a ``helloReceived`` sighting."""
        envelope = event.envelope
        # Checked regardless of the transport's ignore_instance setting.
        if envelope.iid == self.instance_id:
            return
        data = event.data
        if not isinstance(data, dict):
            logger.debug(
                "[Discovery/Beacon] ignoring hello with non-object payload from {}:{}",
                event.sender.address, event.sender.port,
            )
            return

        data["lastSeen"] = _now_ms()
        data["address"] = event.sender.address
        data["port"] = event.sender.port
        data["hostName"] = envelope.host_name
        data["id"] = envelope.iid
        logger.debug(
            "[Discovery/Beacon] hello from {} @ {}:{}",
            envelope.iid, event.sender.address, event.sender.port,
        )
        self._events.dispatch(HELLO_RECEIVED, data)
