"""Rate-limited, signed BitMEX REST access and incremental stream dispatch."""

__version__ = "0.1.0"
