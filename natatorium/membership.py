"""Bridge from beacon sightings to a cluster-membership system.

The membership system (a SWIM implementation, a gossip cluster...) is an
opaque collaborator: all this module needs from it is ``join(peer_address)``,
either plain or async.  Peers that advertise a ``host`` field in their hello
payload (e.g. ``{"host": "10.0.0.7:4000"}``, the address their membership
endpoint listens on) are joined by that value; otherwise the UDP source
``address:port`` of the sighting is used.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from natatorium.discovery.beacon import Beacon


@runtime_checkable
class Membership(Protocol):
    def join(self, peer_address: str) -> Any: ...


def peer_address(sighting: dict[str, Any]) -> str:
    """Return the address a membership system should join for *sighting*."""
    host = sighting.get("host")
    if isinstance(host, str) and host:
        return host
    return f"{sighting['address']}:{sighting['port']}"


class MembershipBridge:
    """Feeds every ``helloReceived`` sighting into ``membership.join``.

    With ``stop_after_join`` the beacon's heartbeat is stopped after the first
    successful join, leaving further discovery to the membership system.
    """

    def __init__(
        self,
        beacon: Beacon,
        membership: Membership,
        *,
        stop_after_join: bool = False,
    ) -> None:
        self.beacon = beacon
        self.membership = membership
        self.stop_after_join = stop_after_join
        self.joined: list[str] = []
        beacon.on_hello_received(self._on_sighting)

    async def _on_sighting(self, sighting: dict[str, Any]) -> None:
        if self.stop_after_join and self.joined:
            return
        address = peer_address(sighting)
        # Claimed before awaiting so concurrent sightings see it.
        self.joined.append(address)
        try:
            result = self.membership.join(address)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            self.joined.remove(address)
            raise
        logger.info("[Membership] joined {} (seen via {})", address, sighting.get("id"))
        if self.stop_after_join:
            self.beacon.stop()
