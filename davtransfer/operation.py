"""
A single request/response cycle with callback-once completion.

A TransferOperation issues exactly one request through its transport,
turns whatever happens into a TransferOutcome and resolves exactly once:
either the success callback or the failure callback fires, never both,
never twice.  A cancelled operation fires neither.  Retrying is left to
the caller (see davtransfer.coordinator for chunked uploads).
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

import aiohttp
import requests

from davtransfer.io.base import AsyncIOProtocol, AsyncSink, ProgressCallback
from davtransfer.lib import error
from davtransfer.lib.auth import extract_auth_types
from davtransfer.protocol.types import DAVRequest, DAVResponse, OutcomeKind, TransferOutcome

log = logging.getLogger(__name__)

## HTTP statuses worth trying again later
RECOVERABLE_STATUSES = frozenset((408, 425, 429, 500, 502, 503, 504))
CREDENTIAL_STATUSES = frozenset((401, 403))

## Exceptions a transport raises for network level trouble
NETWORK_ERRORS = (
    aiohttp.ClientError,
    requests.RequestException,
    asyncio.TimeoutError,
    OSError,
)


class CancellationToken:
    """
    Cooperative cancellation signal, e.g. fired by the host when the
    time granted to a background task is about to run out.

    Work checks ``cancelled`` at its suspension points; callbacks added
    with ``add_callback`` let in-flight operations be cancelled at once.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: List[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """
        Run callback on cancellation (immediately if already cancelled).
        Returns a function removing the callback again.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove


class _StoringSink:
    """
    Passes writes on to the real sink.  An OSError raised there is local
    (disk full, permissions) and becomes a RejectedError, so it is not
    taken for network trouble.
    """

    def __init__(self, sink: AsyncSink, url: str) -> None:
        self.sink = sink
        self.url = url

    async def write(self, data: bytes) -> int:
        try:
            return await self.sink.write(data)
        except OSError as e:
            raise error.RejectedError(
                url=self.url, reason=f"could not store the response: {e!r}"
            ) from e


class OperationState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


def classify_response(
    request: DAVRequest, response: DAVResponse
) -> Optional[TransferOutcome]:
    """
    Failure outcome for a response with an error status, or None if the
    status is a success.
    """
    url = request.url
    if response.status in CREDENTIAL_STATUSES:
        auth_header = response.headers.get("WWW-Authenticate") or response.headers.get(
            "www-authenticate"
        )
        if auth_header:
            log.info(
                f"{url} rejected the credentials, server offers {sorted(extract_auth_types(auth_header))}"
            )
        return TransferOutcome(
            kind=OutcomeKind.CREDENTIAL_FAILURE,
            error=error.CredentialError(url=url, reason=response.reason, status=response.status),
            status=response.status,
        )
    if response.status in RECOVERABLE_STATUSES:
        return TransferOutcome(
            kind=OutcomeKind.RECOVERABLE_FAILURE,
            error=error.RecoverableError(url=url, reason=response.reason, status=response.status),
            status=response.status,
        )
    if not response.ok:
        return TransferOutcome(
            kind=OutcomeKind.REJECTED,
            error=error.RejectedError(url=url, reason=error.errmsg(response), status=response.status),
            status=response.status,
        )
    return None


class TransferOperation:
    """
    One network operation (copy, move, delete, listing, mkcol, get, put).

    Args:
        transport: Anything satisfying AsyncIOProtocol
        request: The request to issue
        on_success: Called once with the parsed payload (None for mutations)
        on_failure: Called once with the failure TransferOutcome
        on_progress: Called with (bytes_transferred, total), bytes never
            decreasing
        parse: Turns a successful DAVResponse into the payload.  A
            MalformedResponseError raised here becomes a
            MALFORMED_RESPONSE outcome.
        sink: Where a downloaded body is streamed to
        name: Used in log messages
    """

    def __init__(
        self,
        transport: AsyncIOProtocol,
        request: DAVRequest,
        on_success: Optional[Callable[[Any], Any]] = None,
        on_failure: Optional[Callable[[TransferOutcome], Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
        parse: Optional[Callable[[DAVResponse], Any]] = None,
        sink: Optional[AsyncSink] = None,
        name: Optional[str] = None,
    ) -> None:
        self.transport = transport
        self.request = request
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_progress = on_progress
        self.parse = parse
        self.sink = sink
        self.name = name or f"{request.method.value} {request.url}"
        ## set by the session when the operation goes through a queue
        self.handle = None
        self.state = OperationState.PENDING
        self._future: Optional["asyncio.Future[TransferOutcome]"] = None
        self._task: Optional["asyncio.Task[Any]"] = None
        self._progress_done = -1

    def __repr__(self) -> str:
        return "TransferOperation(%s, %s)" % (self.name, self.state.value)

    @property
    def future(self) -> "asyncio.Future[TransferOutcome]":
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self.state is OperationState.CANCELLED:
                self._future.cancel()
        return self._future

    @property
    def done(self) -> bool:
        return self.state in (
            OperationState.SUCCEEDED,
            OperationState.FAILED,
            OperationState.CANCELLED,
        )

    @property
    def cancelled(self) -> bool:
        return self.state is OperationState.CANCELLED

    async def run(self) -> TransferOutcome:
        """
        Issue the request and resolve the operation.

        Returns the outcome; raises asyncio.CancelledError if the
        operation was cancelled before it resolved.
        """
        if self.state is OperationState.CANCELLED:
            raise asyncio.CancelledError()
        if self.state is not OperationState.PENDING:
            raise RuntimeError(f"{self} has already been run")
        self.state = OperationState.RUNNING
        self._task = asyncio.current_task()
        try:
            outcome = await self._execute()
        except asyncio.CancelledError:
            self._mark_cancelled()
            raise
        except Exception as e:
            ## a bug rather than a transfer failure; waiters get it too
            self.state = OperationState.FAILED
            if not self.future.done():
                self.future.set_exception(e)
            raise
        if self.state is OperationState.CANCELLED:
            ## cancel() came in after the response, but before we got here
            raise asyncio.CancelledError()
        self._resolve(outcome)
        return outcome

    async def wait(self) -> TransferOutcome:
        """Wait for the outcome without running the operation"""
        return await asyncio.shield(self.future)

    def cancel(self) -> bool:
        """
        Cancel the operation.  Neither callback will fire.  The request
        may still reach the server if it was already on its way.

        Returns False if the operation had already resolved.
        """
        if self.done:
            return False
        log.debug(f"cancelling {self}")
        self._mark_cancelled()
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        if self.handle is not None and not self.handle.done():
            self.handle.task.cancel()
        return True

    def _mark_cancelled(self) -> None:
        if self.done:
            return
        self.state = OperationState.CANCELLED
        if self._future is not None and not self._future.done():
            self._future.cancel()

    def _progress(self, done: int, total: Optional[int]) -> None:
        if self.state is not OperationState.RUNNING or self.on_progress is None:
            return
        if done < self._progress_done:
            return
        self._progress_done = done
        self.on_progress(done, total)

    async def _execute(self) -> TransferOutcome:
        try:
            response = await self.transport.execute(
                self.request,
                progress=self._progress if self.on_progress is not None else None,
                sink=_StoringSink(self.sink, self.request.url) if self.sink is not None else None,
            )
        except NETWORK_ERRORS as e:
            log.info(f"{self.name} failed at the network level: {e!r}")
            return TransferOutcome(
                kind=OutcomeKind.RECOVERABLE_FAILURE,
                error=error.RecoverableError(url=self.request.url, reason=repr(e)),
            )
        except error.DAVError as e:
            log.info(f"{self.name} failed: {e}")
            return _outcome_for_error(e)

        failure = classify_response(self.request, response)
        if failure is not None:
            log.info(f"{self.name} failed with status {response.status}: {failure.kind.value}")
            return failure

        payload = None
        if self.parse is not None:
            try:
                payload = await maybe_await(self.parse(response))
            except OSError as e:
                log.warning(f"{self.name}: could not store the response: {e!r}")
                return TransferOutcome(
                    kind=OutcomeKind.REJECTED,
                    error=error.RejectedError(url=self.request.url, reason=repr(e)),
                    status=response.status,
                )
            except error.MalformedResponseError as e:
                if not e.url:
                    e.url = self.request.url
                log.warning(f"{self.name}: could not parse the response: {e.reason}")
                return TransferOutcome(
                    kind=OutcomeKind.MALFORMED_RESPONSE, error=e, status=response.status
                )
        return TransferOutcome(kind=OutcomeKind.SUCCESS, payload=payload, status=response.status)

    def _resolve(self, outcome: TransferOutcome) -> None:
        if self.done:
            return
        if outcome.ok:
            self.state = OperationState.SUCCEEDED
        else:
            self.state = OperationState.FAILED
        if not self.future.done():
            self.future.set_result(outcome)
        log.debug(f"{self} resolved: {outcome.kind.value}")
        if outcome.ok:
            if self.on_success is not None:
                self.on_success(outcome.payload)
        elif self.on_failure is not None:
            self.on_failure(outcome)


def _outcome_for_error(e: error.DAVError) -> TransferOutcome:
    kinds = {
        error.CredentialError: OutcomeKind.CREDENTIAL_FAILURE,
        error.RecoverableError: OutcomeKind.RECOVERABLE_FAILURE,
        error.MalformedResponseError: OutcomeKind.MALFORMED_RESPONSE,
    }
    for cls, kind in kinds.items():
        if isinstance(e, cls):
            return TransferOutcome(kind=kind, error=e, status=e.status)
    return TransferOutcome(kind=OutcomeKind.REJECTED, error=e, status=e.status)


async def maybe_await(result: Any) -> Any:
    """Await if result is awaitable, otherwise return as-is."""
    if inspect.isawaitable(result):
        return await result
    return result
