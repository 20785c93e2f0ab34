"""UDP peer discovery: announce this node, hear about the others.

``DiscoveryTransport`` moves envelopes over broadcast, multicast or a static
unicast list; ``Beacon`` adds the periodic ``hello`` heartbeat on top.
"""

from natatorium.discovery.beacon import Beacon
from natatorium.discovery.events import ErrorEvent, MessageEvent, NamedEvent
from natatorium.discovery.protocol import DecodeError, Envelope, SenderInfo
from natatorium.discovery.transport import DiscoveryTransport

__all__ = [
    "Beacon",
    "DecodeError",
    "DiscoveryTransport",
    "Envelope",
    "ErrorEvent",
    "MessageEvent",
    "NamedEvent",
    "SenderInfo",
]
