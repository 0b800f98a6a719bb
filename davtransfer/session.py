#!/usr/bin/env python
"""
The ``DAVSession`` class ties the pieces together: it owns the protocol
handler (request building and response parsing), a transport and an
operation queue, and hands out one TransferOperation per call.

There is no module level session.  Create one per server and account,
pass it to whatever needs to talk to the server, and close it (or use
``async with``) when done.

Example:

    async with DAVSession("https://cloud.example.com/remote.php/webdav",
                          username="alice", password="secret") as session:
        listing = await session.list("/Documents/").wait()
        for path, record in listing.payload.children:
            print(path, record.etag)
"""

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Mapping, Optional

import aiofiles

from davtransfer import __version__
from davtransfer.chunking import DEFAULT_CHUNK_SIZE, ChunkInputStream, plan_file_chunks
from davtransfer.coordinator import ChunkUploadCoordinator
from davtransfer.io.async_ import AsyncIO
from davtransfer.io.base import AsyncIOProtocol, ProgressCallback
from davtransfer.lib.auth import CredentialProvider, build_credentials
from davtransfer.operation import CancellationToken, OperationState, TransferOperation
from davtransfer.protocol.operations import WebDAVProtocol
from davtransfer.protocol.types import ChunkDescriptor, DAVRequest, DAVResponse, TransferOutcome
from davtransfer.queue import OperationQueue

log = logging.getLogger(__name__)

SuccessCallback = Callable[[Any], Any]
FailureCallback = Callable[[TransferOutcome], Any]


class _FileSink:
    """
    Download target.  Bytes go to ``<path>.part``, which is opened on the
    first write and renamed into place once the download succeeded.
    """

    def __init__(self, local_path: str) -> None:
        self.local_path = local_path
        self.part_path = local_path + ".part"
        self._file = None

    async def write(self, data: bytes) -> int:
        if self._file is None:
            self._file = await aiofiles.open(self.part_path, "wb")
        return await self._file.write(data)

    async def close(self) -> None:
        if self._file is not None:
            await self._file.close()
            self._file = None

    async def commit(self, response: DAVResponse) -> str:
        if self._file is None:
            ## empty body, nothing was written
            self._file = await aiofiles.open(self.part_path, "wb")
        await self.close()
        os.replace(self.part_path, self.local_path)
        return self.local_path

    async def discard(self) -> None:
        await self.close()
        if os.path.exists(self.part_path):
            os.remove(self.part_path)


class DAVSession:
    """
    Handle for one WebDAV endpoint.

    Args:
        url: URL of the DAV root, e.g. https://host/remote.php/webdav
        transport: Anything satisfying AsyncIOProtocol.  Defaults to an
            aiohttp based AsyncIO owned (and closed) by the session.
        credentials: Read-only credential provider.  If not given, one is
            built from username/password/cookie/auth_type.
        headers: Extra headers for every request
        max_concurrent: Operations allowed in flight at the same time
        chunk_size: Default chunk size for chunked uploads
        timeout, verify_ssl, proxy: Passed to the default transport
        huge_tree: Allow parsing very large multistatus documents
    """

    def __init__(
        self,
        url: str,
        transport: Optional[AsyncIOProtocol] = None,
        credentials: Optional[CredentialProvider] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        cookie: Optional[str] = None,
        auth_type: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        max_concurrent: int = 4,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        proxy: Optional[str] = None,
        huge_tree: bool = False,
        queue: Optional[OperationQueue] = None,
    ) -> None:
        if credentials is None:
            credentials = build_credentials(username, password, cookie, auth_type)
        all_headers = {"User-Agent": f"davtransfer/{__version__}"}
        all_headers.update(headers or {})
        self.protocol = WebDAVProtocol(
            url, credentials=credentials, headers=all_headers, huge_tree=huge_tree
        )
        self._owns_transport = transport is None
        self.transport = transport or AsyncIO(timeout=timeout, verify_ssl=verify_ssl, proxy=proxy)
        self.queue = queue or OperationQueue(max_concurrent)
        self.chunk_size = int(chunk_size)
        self._coordinators: set = set()

    def __repr__(self) -> str:
        return "DAVSession(%s)" % self.protocol.base_url

    async def __aenter__(self) -> "DAVSession":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel whatever is still in flight, and close the transport if we own it"""
        self.cancel_all()
        await self.queue.join()
        if self._owns_transport:
            await self.transport.close()

    def cancel_all(self) -> None:
        """Cancel every queued and running operation and chunked upload"""
        for coordinator in list(self._coordinators):
            coordinator.cancel()
        self.queue.cancel_all()

    # ==================== internals ====================

    def _submit(
        self,
        request: DAVRequest,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        parse: Optional[Callable[[DAVResponse], Any]] = None,
        token: Optional[CancellationToken] = None,
        sink: Optional[_FileSink] = None,
        teardown: Optional[Callable[[TransferOperation], Awaitable[Any]]] = None,
    ) -> TransferOperation:
        operation = TransferOperation(
            self.transport,
            request,
            on_success=on_success,
            on_failure=on_failure,
            on_progress=on_progress,
            parse=parse,
            sink=sink,
        )

        async def job() -> TransferOutcome:
            remove_token_callback = token.add_callback(operation.cancel) if token else None
            try:
                return await operation.run()
            finally:
                if remove_token_callback is not None:
                    remove_token_callback()
                if teardown is not None:
                    await teardown(operation)

        operation.handle = self.queue.submit(job, name=operation.name)
        ## a job cancelled while still waiting for a slot never reaches run()
        operation.handle.task.add_done_callback(
            lambda task: operation.cancel() if task.cancelled() else None
        )
        return operation

    # ==================== listing ====================

    def list(
        self,
        path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        """
        List a collection and its immediate children.  The payload is a
        ResourceTree whose first entry is the collection itself.
        """
        return self._submit(
            self.protocol.propfind_request(path, depth=1, headers=headers),
            on_success,
            on_failure,
            parse=lambda response: self.protocol.parse_listing(response, path),
        )

    def properties(
        self,
        path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        """Properties of a single resource.  The payload is a PropertyRecord."""
        return self._submit(
            self.protocol.propfind_request(path, depth=0, headers=headers),
            on_success,
            on_failure,
            parse=lambda response: self.protocol.parse_properties(response, path),
        )

    # ==================== mutations ====================

    def copy(
        self,
        source: str,
        destination: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        overwrite: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        return self._submit(
            self.protocol.copy_request(source, destination, overwrite, headers),
            on_success,
            on_failure,
        )

    def move(
        self,
        source: str,
        destination: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        overwrite: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        return self._submit(
            self.protocol.move_request(source, destination, overwrite, headers),
            on_success,
            on_failure,
        )

    def delete(
        self,
        path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        return self._submit(self.protocol.delete_request(path, headers), on_success, on_failure)

    def mkcol(
        self,
        path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        return self._submit(self.protocol.mkcol_request(path, headers), on_success, on_failure)

    # ==================== whole file transfers ====================

    def download(
        self,
        remote_path: str,
        local_path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        """
        GET remote_path into local_path.  The file only appears under
        local_path once the download is complete; the payload is
        local_path.
        """
        sink = _FileSink(local_path)

        async def teardown(operation: TransferOperation) -> None:
            if operation.state is not OperationState.SUCCEEDED:
                await sink.discard()

        return self._submit(
            self.protocol.get_request(remote_path, headers),
            on_success,
            on_failure,
            on_progress=on_progress,
            parse=sink.commit,
            sink=sink,
            token=token,
            teardown=teardown,
        )

    def put(
        self,
        data: bytes,
        remote_path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        """Upload data held in memory"""
        return self._submit(
            self.protocol.put_request(remote_path, data, headers=headers),
            on_success,
            on_failure,
            on_progress=on_progress,
        )

    def upload(
        self,
        local_path: str,
        remote_path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransferOperation:
        """Upload a local file in a single PUT, streaming it from disk"""
        size = os.path.getsize(local_path)
        stream = ChunkInputStream(
            local_path, ChunkDescriptor(index=0, offset=0, length=size, remote_path=remote_path)
        )

        async def teardown(operation: TransferOperation) -> None:
            await stream.close()

        return self._submit(
            self.protocol.put_request(remote_path, stream, content_length=size, headers=headers),
            on_success,
            on_failure,
            on_progress=on_progress,
            token=token,
            teardown=teardown,
        )

    def upload_chunked(
        self,
        local_path: str,
        remote_path: str,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
        start_index: int = 0,
        chunk_size: Optional[int] = None,
        transfer_id: Optional[int] = None,
    ) -> ChunkUploadCoordinator:
        """
        Upload a local file in chunks.  The coordinator takes one slot of
        the queue for the whole upload; its chunks go out one at a time.

        To resume after a failure, call again with start_index set to the
        chunk_index of the failure outcome, and the same chunk_size.
        """
        chunks = plan_file_chunks(
            local_path, remote_path, chunk_size or self.chunk_size, transfer_id
        )
        coordinator = ChunkUploadCoordinator(
            self.transport,
            self.protocol,
            local_path,
            remote_path,
            chunks,
            on_progress=on_progress,
            on_success=on_success,
            on_failure=on_failure,
            token=token,
            start_index=start_index,
        )
        self._coordinators.add(coordinator)

        def forget(task: "asyncio.Task[Any]") -> None:
            self._coordinators.discard(coordinator)
            ## a job cancelled while still waiting for a slot never reaches run()
            if task.cancelled():
                coordinator.cancel()

        coordinator.handle = self.queue.submit(coordinator.run, name=f"chunked upload of {remote_path}")
        coordinator.handle.task.add_done_callback(forget)
        return coordinator

    # ==================== account ====================

    def request_user_name(
        self,
        cookie: Optional[str] = None,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> TransferOperation:
        """
        Ask the server which user a session cookie belongs to.  The
        payload is the user id.
        """
        return self._submit(
            self.protocol.user_name_request(cookie),
            on_success,
            on_failure,
            parse=self.protocol.parse_user_name,
        )

