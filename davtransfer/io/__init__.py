"""
I/O layer for the WebDAV transfer engine.

This module provides transports executing DAVRequest objects and
returning DAVResponse objects.

The I/O layer is intentionally thin - it only handles HTTP transport,
streaming and byte counting.  All protocol logic (XML building/parsing)
is in davtransfer.protocol, all outcome classification in
davtransfer.operation.

Example:
    from davtransfer.protocol import WebDAVProtocol
    from davtransfer.io import AsyncIO

    protocol = WebDAVProtocol(base_url="https://cloud.example.com/remote.php/webdav")
    async with AsyncIO() as io:
        request = protocol.propfind_request("/Documents/", depth=1)
        response = await io.execute(request)
        tree = protocol.parse_listing(response)
"""

from .base import AsyncIOProtocol, AsyncSink, ProgressCallback
from .async_ import AsyncIO
from .threaded import ThreadedIO

__all__ = [
    # Protocols
    "AsyncIOProtocol",
    "AsyncSink",
    "ProgressCallback",
    # Implementations
    "AsyncIO",
    "ThreadedIO",
]
