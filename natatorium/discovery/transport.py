"""UDP transport for discovery announcements.

How it works
------------
1. ``start()`` binds one UDP socket and picks where announcements go, in
   priority order: the static unicast list, else the broadcast address when
   no multicast group is configured, else the multicast group (joined on
   every interface).  The choice is fixed until the transport is restarted.
2. ``send(event, data)`` wraps the payload in an envelope carrying this
   process's and this instance's identities and sends one identical datagram
   to every destination, on the same port the transport is bound to.
3. Every received datagram is decoded, checked against the self-origin
   filters and dispatched as a ``NamedEvent`` (envelope carries data) or a
   ``MessageEvent`` (it does not).  Undecodable datagrams become
   ``ErrorEvent``s and are dropped.

Sending is fire-and-forget: nothing reports unreachable peers, and a payload
that cannot be serialised is skipped without raising.
"""

from __future__ import annotations

import asyncio
import socket
import sys
from typing import Any

from loguru import logger

from natatorium.config.schema import DiscoveryConfig
from natatorium.discovery.encryption import make_cipher
from natatorium.discovery.events import (
    ERROR,
    MESSAGE,
    ErrorEvent,
    EventDispatcher,
    Handler,
    MessageEvent,
    NamedEvent,
)
from natatorium.discovery.identity import HOST_NAME, new_id, process_id
from natatorium.discovery.protocol import DecodeError, Envelope, SenderInfo, decode, encode


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Feeds datagrams from the event loop into the owning transport."""

    def __init__(self, owner: DiscoveryTransport, closed: asyncio.Future) -> None:
        self._owner = owner
        self._closed = closed

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._owner._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        # ICMP unreachable and friends; UDP gives no delivery guarantee anyway.
        logger.debug("[Discovery/Transport] socket error: {}", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if not self._closed.done():
            self._closed.set_result(None)


class DiscoveryTransport:
    """Broadcast, multicast or unicast announcement transport.

    Parameters
    ----------
    config:
        A ``DiscoveryConfig``.  When omitted, one is built from *options*,
        which accept both snake_case and camelCase keys
        (``multicastTTL``, ``reuseAddr``, ``ignoreProcess``...).
    """

    def __init__(self, config: DiscoveryConfig | None = None, **options: Any) -> None:
        self.config = config if config is not None else DiscoveryConfig.model_validate(options)
        self.instance_id = new_id()
        self.process_id = process_id()
        self.destinations: list[str] = []
        self._cipher = make_cipher(self.config.key, self.config.cipher)
        self._events = EventDispatcher("Discovery/Transport")
        self._transport: asyncio.DatagramTransport | None = None
        self._closed: asyncio.Future | None = None
        self._started = False

    # -- handler registration ------------------------------------------------

    def on(self, name: str, handler: Handler) -> None:
        """Register *handler* for envelopes whose event is *name*."""
        self._events.on(name, handler)

    def off(self, name: str, handler: Handler) -> None:
        self._events.off(name, handler)

    def on_message(self, handler: Handler) -> None:
        """Register a handler for envelopes that carry no data."""
        self._events.on(MESSAGE, handler)

    def on_error(self, handler: Handler) -> None:
        """Register a handler for decode, bind and multicast-join failures."""
        self._events.on(ERROR, handler)

    # -- lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._transport is not None

    @property
    def local_address(self) -> tuple[str, int] | None:
        """The bound ``(address, port)``, or ``None`` when not running."""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    async def start(self) -> None:
        """Bind the socket and resolve destinations.

        Raises the underlying ``OSError`` when binding or joining the
        multicast group fails; the transport is unusable afterwards.
        """
        if self._started:
            raise RuntimeError("discovery transport already started")
        self._started = True

        cfg = self.config
        loop = asyncio.get_running_loop()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if cfg.reuse_addr:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                # BSD and macOS need SO_REUSEPORT for several UDP binds on one port.
                if sys.platform != "linux" and hasattr(socket, "SO_REUSEPORT"):
                    try:
                        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                    except OSError:
                        pass
            sock.bind((cfg.address, cfg.port))
            self.destinations = self._resolve_destinations(sock)
            sock.setblocking(False)

            closed = loop.create_future()
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _DiscoveryProtocol(self, closed),
                sock=sock,
            )
            self._closed = closed
        except OSError as exc:
            sock.close()
            self.destinations = []
            logger.error(
                "[Discovery/Transport] start failed on {}:{}: {}",
                cfg.address, cfg.port, exc,
            )
            self._events.dispatch(ERROR, ErrorEvent(exc))
            raise

        logger.info(
            "[Discovery/Transport] started: iid={} bind={}:{} destinations={} encrypted={}",
            self.instance_id, cfg.address, cfg.port, self.destinations,
            self._cipher.scheme if self._cipher else "no",
        )

    def _resolve_destinations(self, sock: socket.socket) -> list[str]:
        cfg = self.config
        if cfg.unicast:
            return list(cfg.unicast)
        if not cfg.multicast:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            return [cfg.broadcast]
        # Raises OSError when the group is invalid or no interface can join it.
        mreq = socket.inet_aton(cfg.multicast) + socket.inet_aton("0.0.0.0")
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, cfg.multicast_ttl)
        return [cfg.multicast]

    async def stop(self) -> None:
        """Close the socket.  Only valid after a successful :meth:`start`."""
        if self._transport is None:
            raise RuntimeError("discovery transport is not running")
        transport, self._transport = self._transport, None
        transport.close()
        if self._closed is not None:
            await self._closed
        logger.info("[Discovery/Transport] stopped: iid={}", self.instance_id)

    # -- sending -------------------------------------------------------------

    def send(self, event: str, data: Any = None) -> None:
        """Send *event* (with optional *data*) to every destination."""
        if self._transport is None:
            logger.debug("[Discovery/Transport] not running, {!r} not sent", event)
            return
        envelope = Envelope(
            event=event,
            pid=self.process_id,
            iid=self.instance_id,
            host_name=HOST_NAME,
            data=data,
        )
        try:
            payload = encode(envelope, self._cipher)
        except (TypeError, ValueError, RecursionError) as exc:
            logger.debug("[Discovery/Transport] cannot encode {!r}, not sent: {}", event, exc)
            return

        for destination in self.destinations:
            self._transport.sendto(payload, (destination, self.config.port))

    # -- receiving -----------------------------------------------------------

    def _handle_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        sender = SenderInfo(address=addr[0], port=addr[1])
        try:
            envelope = decode(data, self._cipher)
        except DecodeError as exc:
            # Usually a datagram encrypted with a key we do not have.
            logger.warning(
                "[Discovery/Transport] undecodable datagram from {}:{}: {}",
                sender.address, sender.port, exc,
            )
            self._events.dispatch(ERROR, ErrorEvent(exc))
            return

        if self._is_self_origin(envelope):
            return

        if envelope.data is not None:
            self._events.dispatch(
                envelope.event,
                NamedEvent(name=envelope.event, data=envelope.data, envelope=envelope, sender=sender),
            )
        else:
            self._events.dispatch(MESSAGE, MessageEvent(envelope=envelope, sender=sender))

    def _is_self_origin(self, envelope: Envelope) -> bool:
        """Apply the sibling-instance and own-instance filters."""
        if (
            envelope.pid == self.process_id
            and self.config.ignore_process
            and envelope.iid != self.instance_id
        ):
            return True
        return envelope.iid == self.instance_id and self.config.ignore_instance
