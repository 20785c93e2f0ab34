"""natatorium - serverless peer discovery over UDP for LAN clusters."""

__version__ = "0.1.0"
