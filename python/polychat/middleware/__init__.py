"""Middleware modules for the Polychat API."""

from polychat.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware
from polychat.middleware.stream_cors import StreamCORSMiddleware

__all__ = ["RequestIDMiddleware", "REQUEST_ID_HEADER", "StreamCORSMiddleware"]
