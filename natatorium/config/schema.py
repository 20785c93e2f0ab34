"""Configuration schema using Pydantic."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DiscoveryConfig(Base):
    """UDP discovery transport options.  Immutable once built."""

    model_config = ConfigDict(frozen=True)

    address: str = "0.0.0.0"  # Bind address
    port: int = Field(default=23456, ge=0, le=65535)  # Bind port, also the destination port
    broadcast: str = "255.255.255.255"  # Destination when neither unicast nor multicast is set
    multicast: str | None = None  # Multicast group to join and send to
    multicast_ttl: int = Field(default=1, ge=0, le=255, alias="multicastTTL")
    unicast: tuple[str, ...] = ()  # Static destinations; wins over multicast and broadcast
    key: str | None = None  # Shared passphrase; enables encryption when set
    cipher: Literal["aes-gcm", "legacy"] = "aes-gcm"  # "legacy" talks to createCipher-era nodes
    reuse_addr: bool = True  # Allow several sockets to bind the same port
    ignore_process: bool = True  # Drop announcements from sibling instances in this process
    ignore_instance: bool = True  # Drop this instance's own announcements

    @field_validator("unicast", mode="before")
    @classmethod
    def _split_unicast(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            return tuple(s.strip() for s in v if isinstance(s, str) and s.strip())
        return v


class BeaconConfig(Base):
    """Heartbeat beacon options."""

    interval: float = Field(default=2.0, gt=0)  # Seconds between hello announcements
    transport: DiscoveryConfig = Field(default_factory=DiscoveryConfig)


class Settings(BaseSettings):
    """Root configuration for ``python -m natatorium``."""

    beacon: BeaconConfig = Field(default_factory=BeaconConfig)
    payload: dict[str, Any] = Field(default_factory=dict)  # Local data announced in every hello
    log_level: str = "INFO"

    model_config = ConfigDict(env_prefix="NATATORIUM_", env_nested_delimiter="__")
