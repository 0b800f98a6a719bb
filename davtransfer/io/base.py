"""
Abstract I/O protocol definition.

This module defines the interface that all transports must follow.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from davtransfer.protocol.types import DAVRequest, DAVResponse

## (bytes transferred so far, expected total or None if unknown)
ProgressCallback = Callable[[int, Optional[int]], None]


@runtime_checkable
class AsyncSink(Protocol):
    """Where a downloaded body goes, e.g. a file opened with aiofiles"""

    async def write(self, data: bytes) -> int: ...


@runtime_checkable
class AsyncIOProtocol(Protocol):
    """
    Protocol defining the asynchronous transport interface.

    Implementations must execute exactly one HTTP request per call to
    execute(), and must not retry on their own.  Network level problems
    are raised as exceptions; any HTTP status, including 4xx and 5xx, is
    returned as a DAVResponse.
    """

    async def execute(
        self,
        request: DAVRequest,
        progress: Optional[ProgressCallback] = None,
        sink: Optional[AsyncSink] = None,
    ) -> DAVResponse:
        """
        Execute a request and return the response.

        Args:
            request: The DAVRequest to execute
            progress: Called with (bytes_sent, total) while a request body
                is streamed, or (bytes_received, total) while a response
                body is read
            sink: If given, a successful response body is written here
                instead of being kept in memory

        Returns:
            DAVResponse with status, headers, and body
        """
        ...

    async def close(self) -> None:
        """Close any resources (e.g., HTTP session)."""
        ...
