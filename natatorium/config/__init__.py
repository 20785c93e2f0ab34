"""Configuration module for natatorium."""

from natatorium.config.schema import BeaconConfig, DiscoveryConfig, Settings

__all__ = ["BeaconConfig", "DiscoveryConfig", "Settings"]
