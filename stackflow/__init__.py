"""Unit framework over ZeroMQ: RPC endpoints, task channels, work-id helpers and logging."""

__version__ = "0.1.0"
__all__ = ["log", "pzmq_data", "pzmq", "util", "channel", "stackflow"]