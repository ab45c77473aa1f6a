"""HTTP client helpers for consumers of the Polychat API."""

from polychat.client.stream_reader import StreamReader, StreamView

__all__ = ["StreamReader", "StreamView"]
