"""Client for the ClickHouse native TCP protocol, with LZ4 compression and optional TLS."""

__version__ = "0.1.0"