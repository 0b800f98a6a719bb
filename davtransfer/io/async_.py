"""
Asynchronous I/O implementation using aiohttp library.
"""

import logging
from typing import AsyncIterator, Optional

import aiohttp

from davtransfer.lib.python_utilities import to_normal_str
from davtransfer.protocol.types import Body, DAVRequest, DAVResponse

from .base import AsyncSink, ProgressCallback

log = logging.getLogger(__name__)

## Size of the blocks a response body is read in, and a bytes request
## body is cut into when progress is wanted
BLOCK_SIZE = 65536


async def iter_content(response: aiohttp.ClientResponse, block_size: int) -> AsyncIterator[bytes]:
    """Async generator to iterate over response content by blocks."""
    while block := await response.content.read(block_size):
        yield block


async def _counting(
    body: Body, total: Optional[int], progress: ProgressCallback
) -> AsyncIterator[bytes]:
    """Hand the body over block by block, reporting what has been handed over"""
    sent = 0
    progress(sent, total)
    if isinstance(body, (bytes, bytearray)):
        for start in range(0, len(body), BLOCK_SIZE):
            block = bytes(body[start : start + BLOCK_SIZE])
            yield block
            sent += len(block)
            progress(sent, total)
    else:
        async for block in body:
            yield block
            sent += len(block)
            progress(sent, total)


class AsyncIO:
    """
    Asynchronous I/O shell using aiohttp library.

    This is a thin wrapper that executes DAVRequest objects via HTTP
    and returns DAVResponse objects.

    Example:
        async with AsyncIO() as io:
            request = protocol.propfind_request("/Documents/", depth=1)
            response = await io.execute(request)
            tree = protocol.parse_listing(response)
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        proxy: Optional[str] = None,
    ):
        """
        Initialize the async I/O handler.

        Args:
            session: Existing aiohttp ClientSession to use (creates new if None)
            timeout: Timeout in seconds for connecting and between reads.
                There is no total timeout, as a large upload may
                legitimately take a long time.
            verify_ssl: Verify SSL certificates
            proxy: Proxy server (scheme://hostname:port)
        """
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=None, connect=timeout, sock_read=timeout)
        self.verify_ssl = verify_ssl
        self.proxy = proxy
        if self.proxy is not None and "://" not in self.proxy:
            self.proxy = "http://" + self.proxy

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(ssl=None if self.verify_ssl else False)
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                connector=connector,
            )
        return self._session

    async def execute(
        self,
        request: DAVRequest,
        progress: Optional[ProgressCallback] = None,
        sink: Optional[AsyncSink] = None,
    ) -> DAVResponse:
        """
        Execute a DAVRequest and return DAVResponse.

        Args:
            request: The request to execute
            progress: Byte count callback, see AsyncIOProtocol
            sink: Where to stream a successful response body

        Returns:
            DAVResponse with status, headers, and body
        """
        session = await self._get_session()

        data = request.body
        if progress is not None and data is not None:
            data = _counting(data, request.content_length, progress)

        log.debug(f"sending request - method={request.method.value}, url={request.url}")
        if isinstance(request.body, (bytes, bytearray)):
            log.debug(f"body:\n{to_normal_str(request.body)}")

        async with session.request(
            method=request.method.value,
            url=request.url,
            headers=request.headers,
            data=data,
            proxy=self.proxy,
            allow_redirects=False,
        ) as response:
            log.debug(f"server responded with {response.status} {response.reason}")
            if sink is not None and 200 <= response.status < 300:
                body = b""
                received = 0
                total = response.content_length
                if progress is not None:
                    progress(received, total)
                async for block in iter_content(response, BLOCK_SIZE):
                    await sink.write(block)
                    received += len(block)
                    if progress is not None:
                        progress(received, total)
            else:
                body = await response.read()
            return DAVResponse(
                status=response.status,
                headers=dict(response.headers),
                body=body,
            )

    async def close(self) -> None:
        """Close the session if we created it."""
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AsyncIO":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args) -> None:
        """Async context manager exit."""
        await self.close()
