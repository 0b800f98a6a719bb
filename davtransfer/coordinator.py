"""
Chunked upload of one file.

The coordinator makes a single pass over the chunk sequence: it PUTs
chunk ``i``, waits for the outcome, and only then moves on to ``i + 1``.
The first failure ends the pass.  The outcome then names the failing
chunk, so the caller can refresh credentials or wait for the network and
start a new coordinator at that index.  Chunks acknowledged before the
failure are not sent again.
"""

import asyncio
import dataclasses
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

from davtransfer.chunking import ChunkInputStream, validate_chunks
from davtransfer.io.base import AsyncIOProtocol, ProgressCallback
from davtransfer.operation import CancellationToken, TransferOperation
from davtransfer.protocol.operations import WebDAVProtocol
from davtransfer.protocol.types import ChunkDescriptor, OutcomeKind, TransferOutcome

log = logging.getLogger(__name__)


class UploadState(Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    CREDENTIAL_FAILURE = "credential_failure"
    RECOVERABLE_FAILURE = "recoverable_failure"
    ## malformed response or a request the server refused
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    (
        UploadState.COMPLETE,
        UploadState.CREDENTIAL_FAILURE,
        UploadState.RECOVERABLE_FAILURE,
        UploadState.FAILED,
        UploadState.CANCELLED,
    )
)

_STATE_FOR_KIND = {
    OutcomeKind.CREDENTIAL_FAILURE: UploadState.CREDENTIAL_FAILURE,
    OutcomeKind.RECOVERABLE_FAILURE: UploadState.RECOVERABLE_FAILURE,
    OutcomeKind.MALFORMED_RESPONSE: UploadState.FAILED,
    OutcomeKind.REJECTED: UploadState.FAILED,
}


class ChunkUploadCoordinator:
    """
    Uploads the chunks of one local file, strictly in order.

    Args:
        transport: Anything satisfying AsyncIOProtocol
        protocol: Builds the chunk PUT requests
        local_path: File the chunks are read from
        remote_path: Final destination of the file
        chunks: Descriptors from davtransfer.chunking.plan_chunks
        on_progress: Called with (bytes uploaded, file size), cumulative
            over all chunks
        on_success: Called once with remote_path when the last chunk is in
        on_failure: Called once with the failure TransferOutcome
        token: Cancellation token, checked before each chunk is issued
        start_index: First chunk to send, when resuming an upload
    """

    def __init__(
        self,
        transport: AsyncIOProtocol,
        protocol: WebDAVProtocol,
        local_path: str,
        remote_path: str,
        chunks: List[ChunkDescriptor],
        on_progress: Optional[ProgressCallback] = None,
        on_success: Optional[Callable[[Any], Any]] = None,
        on_failure: Optional[Callable[[TransferOutcome], Any]] = None,
        token: Optional[CancellationToken] = None,
        start_index: int = 0,
    ) -> None:
        validate_chunks(chunks)
        if not chunks:
            raise ValueError("nothing to upload, no chunks given")
        if not 0 <= start_index < len(chunks):
            raise ValueError(f"start_index {start_index} out of range 0..{len(chunks) - 1}")
        self.transport = transport
        self.protocol = protocol
        self.local_path = local_path
        self.remote_path = remote_path
        self.chunks = chunks
        self.on_progress = on_progress
        self.on_success = on_success
        self.on_failure = on_failure
        self.token = token
        self.start_index = start_index
        self.total = sum(chunk.length for chunk in chunks)
        self.state = UploadState.IDLE
        ## index of the chunk being uploaded, or where the pass stopped
        self.current_index: Optional[int] = None
        ## the one stream open at any time
        self.stream: Optional[ChunkInputStream] = None
        self._operation: Optional[TransferOperation] = None
        self._chunk_task: Optional["asyncio.Task[TransferOutcome]"] = None
        self._cancel_requested = False
        self._started = False
        self._reported = -1
        ## set by the session when the upload goes through a queue
        self.handle = None

    def __repr__(self) -> str:
        return "ChunkUploadCoordinator(%s, %s, chunk %s)" % (
            self.remote_path,
            self.state.value,
            self.current_index,
        )

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self) -> None:
        """
        Stop issuing chunks and cancel the chunk in flight.  Chunks
        already acknowledged stay on the server.  No callback fires.
        """
        if self.done or self._cancel_requested:
            return
        log.debug(f"cancelling {self}")
        self._cancel_requested = True
        if self.state is UploadState.IDLE:
            ## never started, nothing in flight
            self.current_index = self.start_index
            self.state = UploadState.CANCELLED
            return
        if self._operation is not None:
            self._operation.cancel()
        if self._chunk_task is not None and not self._chunk_task.done():
            self._chunk_task.cancel()

    def _report(self, done: int) -> None:
        done = min(done, self.total)
        if self.on_progress is None or done < self._reported:
            return
        self._reported = done
        self.on_progress(done, self.total)

    async def run(self) -> TransferOutcome:
        """
        Make the pass over the chunks.

        Returns the outcome: SUCCESS, a failure carrying chunk_index and
        remote_path, or CANCELLED.  Callbacks fire for success and
        failure, not for cancellation.
        """
        if self._started:
            raise RuntimeError(f"{self} has already been run")
        self._started = True
        if self.state is UploadState.CANCELLED:
            return self._finish_cancelled()
        self.state = UploadState.UPLOADING
        remove_token_callback = None
        if self.token is not None:
            remove_token_callback = self.token.add_callback(self.cancel)

        completed = sum(chunk.length for chunk in self.chunks[: self.start_index])
        self._report(completed)
        try:
            for chunk in self.chunks[self.start_index :]:
                self.current_index = chunk.index
                if self._cancel_requested:
                    return self._finish_cancelled()

                outcome = await self._upload_chunk(chunk, completed)
                if outcome is None:
                    return self._finish_cancelled()
                if not outcome.ok:
                    return self._finish_failed(outcome)

                completed += chunk.length
                self._report(completed)
                log.debug(f"chunk {chunk.index + 1}/{len(self.chunks)} of {self.remote_path} done")
        finally:
            if remove_token_callback is not None:
                remove_token_callback()

        self.state = UploadState.COMPLETE
        log.info(f"uploaded {self.local_path} to {self.remote_path} in {len(self.chunks)} chunks")
        outcome = TransferOutcome(
            kind=OutcomeKind.SUCCESS, payload=self.remote_path, remote_path=self.remote_path
        )
        if self.on_success is not None:
            self.on_success(self.remote_path)
        return outcome

    async def _upload_chunk(self, chunk: ChunkDescriptor, completed: int) -> Optional[TransferOutcome]:
        """
        PUT one chunk.  Returns None if the coordinator was cancelled
        while the chunk was in flight.
        """
        self.stream = ChunkInputStream(self.local_path, chunk)
        try:
            request = self.protocol.chunk_put_request(chunk, self.stream)
            self._operation = TransferOperation(
                self.transport,
                request,
                on_progress=lambda done, _total: self._report(completed + min(done, chunk.length)),
                name=f"chunk {chunk.index + 1}/{len(self.chunks)} of {self.remote_path}",
            )
            self._chunk_task = asyncio.ensure_future(self._operation.run())
            try:
                return await self._chunk_task
            except asyncio.CancelledError:
                if self._cancel_requested:
                    return None
                ## cancelled from outside, not through cancel()
                self._operation.cancel()
                self.state = UploadState.CANCELLED
                raise
        finally:
            await self.stream.close()
            self.stream = None
            self._operation = None
            self._chunk_task = None

    def _finish_cancelled(self) -> TransferOutcome:
        self.state = UploadState.CANCELLED
        log.info(f"upload of {self.remote_path} cancelled at chunk {self.current_index}")
        return TransferOutcome(
            kind=OutcomeKind.CANCELLED,
            chunk_index=self.current_index,
            remote_path=self.remote_path,
        )

    def _finish_failed(self, outcome: TransferOutcome) -> TransferOutcome:
        self.state = _STATE_FOR_KIND[outcome.kind]
        log.warning(
            f"upload of {self.remote_path} stopped at chunk {self.current_index}: {outcome.kind.value}"
        )
        outcome = dataclasses.replace(
            outcome, chunk_index=self.current_index, remote_path=self.remote_path
        )
        if self.on_failure is not None:
            self.on_failure(outcome)
        return outcome
