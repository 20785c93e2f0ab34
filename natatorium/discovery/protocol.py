"""Wire-level protocol for discovery announcements.

Every announcement is a single UDP datagram carrying one JSON envelope, with
no length prefix, magic number or version field.

Envelope format
---------------
{
    "event": "hello",      # application event name
    "pid": "...",          # sender process identity
    "iid": "...",          # sender instance identity
    "hostName": "...",     # sender host name
    "data": { ... }        # optional payload, omitted when not supplied
}

When a key is configured the JSON text is encrypted before it is sent (see
``natatorium.discovery.encryption``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from natatorium.discovery.encryption import Cipher


class DecodeError(ValueError):
    """A datagram could not be turned into an envelope."""


@dataclass
class Envelope:
    """One discovery message."""

    event: str
    pid: str
    iid: str
    host_name: str = ""
    data: Any = None

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation (``data`` only when present)."""
        d: dict[str, Any] = {
            "event": self.event,
            "pid": self.pid,
            "iid": self.iid,
            "hostName": self.host_name,
        }
        if self.data is not None:
            d["data"] = self.data
        return d

    @classmethod
    def from_dict(cls, obj: Any) -> Envelope:
        if not isinstance(obj, dict):
            raise DecodeError(f"envelope must be a JSON object, got {type(obj).__name__}")
        event = obj.get("event")
        if not isinstance(event, str):
            raise DecodeError("envelope has no event name")
        return cls(
            event=event,
            pid=str(obj.get("pid", "")),
            iid=str(obj.get("iid", "")),
            host_name=str(obj.get("hostName", "")),
            data=obj.get("data"),
        )


@dataclass(frozen=True)
class SenderInfo:
    """Source of a received datagram, as reported by the socket."""

    address: str
    port: int


def encode(envelope: Envelope, cipher: Cipher | None = None) -> bytes:
    """Serialise *envelope* to datagram bytes, encrypting when *cipher* is set.

    Raises ``TypeError``/``ValueError`` when the payload is not JSON
    serialisable.
    """
    text = json.dumps(envelope.to_dict(), ensure_ascii=False, allow_nan=False)
    if cipher is None:
        return text.encode("utf-8")
    return cipher.encrypt(text)


def decode(datagram: bytes, cipher: Cipher | None = None) -> Envelope:
    """Inverse of :func:`encode`.  Any failure raises :class:`DecodeError`."""
    try:
        text = cipher.decrypt(datagram) if cipher is not None else datagram.decode("utf-8")
        obj = json.loads(text)
    except (ValueError, UnicodeError, RecursionError) as exc:
        raise DecodeError(str(exc) or type(exc).__name__) from exc
    return Envelope.from_dict(obj)
