"""
Requests based I/O, run in a worker thread.

This backend satisfies the same AsyncIOProtocol as AsyncIO, for
environments where aiohttp is not wanted or a preconfigured
requests.Session (custom adapters, client certificates, corporate
proxies) has to be reused.  Bodies pass through memory: a streamed
request body is collected before sending, and a response body is read
completely before it is handed to the sink.
"""

import asyncio
import logging
from typing import Callable, Optional

import requests

from davtransfer.protocol.types import DAVRequest, DAVResponse

from .base import AsyncSink, ProgressCallback

log = logging.getLogger(__name__)

BLOCK_SIZE = 65536


class _CountingReader:
    """
    File-like view of a bytes body.  http.client reads it block by block,
    which is where the upload progress comes from.
    """

    def __init__(self, data: bytes, report: Callable[[int], None]) -> None:
        self._data = data
        self._pos = 0
        self._report = report

    def __len__(self) -> int:
        return len(self._data)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._data) - self._pos
        block = self._data[self._pos : self._pos + size]
        self._pos += len(block)
        if block:
            self._report(self._pos)
        return block


class ThreadedIO:
    """
    I/O shell using the requests library from a worker thread.

    Example:
        async with ThreadedIO() as io:
            response = await io.execute(protocol.get_request("/notes.txt"))
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        verify: bool = True,
        proxy: Optional[str] = None,
    ):
        """
        Initialize the threaded I/O handler.

        Args:
            session: Existing requests Session to use (creates new if None)
            timeout: Connect and read timeout in seconds
            verify: Verify SSL certificates
            proxy: Proxy server (scheme://hostname:port)
        """
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout
        self.verify = verify
        self.proxies = None
        if proxy is not None:
            if "://" not in proxy:
                proxy = "http://" + proxy
            self.proxies = {"http": proxy, "https": proxy}

    async def execute(
        self,
        request: DAVRequest,
        progress: Optional[ProgressCallback] = None,
        sink: Optional[AsyncSink] = None,
    ) -> DAVResponse:
        """
        Execute a DAVRequest and return DAVResponse.

        Progress callbacks are delivered on the event loop, in order.
        """
        loop = asyncio.get_running_loop()

        def report(done: int, total: Optional[int]) -> None:
            if progress is not None:
                loop.call_soon_threadsafe(progress, done, total)

        body = request.body
        if body is not None and not isinstance(body, (bytes, bytearray)):
            body = b"".join([block async for block in body])

        data = None
        if body is not None:
            total = len(body)
            report(0, total)
            data = _CountingReader(bytes(body), lambda done: report(done, total))

        response, content = await asyncio.to_thread(
            self._send, request, data, report if sink is not None else None
        )
        if sink is not None and response.ok:
            for start in range(0, len(content), BLOCK_SIZE):
                await sink.write(content[start : start + BLOCK_SIZE])
            content = b""

        return DAVResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=content,
        )

    def _send(
        self,
        request: DAVRequest,
        data: Optional[_CountingReader],
        report: Optional[Callable[[int, Optional[int]], None]],
    ) -> tuple[requests.Response, bytes]:
        log.debug(f"sending request - method={request.method.value}, url={request.url}")
        response = self.session.request(
            method=request.method.value,
            url=request.url,
            headers=request.headers,
            data=data,
            timeout=self.timeout,
            verify=self.verify,
            proxies=self.proxies,
            allow_redirects=False,
            stream=report is not None,
        )
        log.debug(f"server responded with {response.status_code} {response.reason}")
        if report is not None and response.ok:
            total = response.headers.get("Content-Length")
            total = int(total) if total and total.isdigit() else None
            received = 0
            blocks = []
            report(received, total)
            for block in response.iter_content(BLOCK_SIZE):
                blocks.append(block)
                received += len(block)
                report(received, total)
            return response, b"".join(blocks)
        return response, response.content

    async def close(self) -> None:
        """Close the session if we created it."""
        if self._owns_session and self.session:
            self.session.close()

    async def __aenter__(self) -> "ThreadedIO":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args) -> None:
        """Async context manager exit."""
        await self.close()
