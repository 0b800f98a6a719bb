"""
Unit tests for the chunked upload coordinator.

The server is a FakeTransport; the local file lives in tmp_path.
"""

import asyncio
from unittest import mock

import aiohttp
import pytest

from fixture_helpers import BASE_URL, FakeTransport, response

from davtransfer.chunking import plan_chunks
from davtransfer.coordinator import ChunkUploadCoordinator, UploadState
from davtransfer.operation import CancellationToken
from davtransfer.protocol import ChunkDescriptor, OutcomeKind, WebDAVProtocol

REMOTE = "/Backups/big.bin"


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "big.bin"
    path.write_bytes(bytes(range(50)))
    return str(path)


def make_coordinator(transport, local_file, chunks=None, **kwargs):
    if chunks is None:
        chunks = plan_chunks(REMOTE, 50, chunk_size=10, transfer_id=99)
    callbacks = {
        "on_success": mock.Mock(),
        "on_failure": mock.Mock(),
    }
    callbacks.update(kwargs)
    coordinator = ChunkUploadCoordinator(
        transport, WebDAVProtocol(BASE_URL), local_file, REMOTE, chunks, **callbacks
    )
    return coordinator


def failing_at(index, status=None, exc=None):
    def responder(request):
        if request.url.endswith(f"-{index}"):
            if exc is not None:
                raise exc
            return response(status)
        return response(201)

    return responder


class TestChunkUploadCoordinator:
    @pytest.mark.asyncio
    async def test_chunks_go_out_in_order(self, local_file) -> None:
        transport = FakeTransport()
        coordinator = make_coordinator(transport, local_file)

        outcome = await coordinator.run()

        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.payload == REMOTE
        assert coordinator.state == UploadState.COMPLETE
        coordinator.on_success.assert_called_once_with(REMOTE)
        coordinator.on_failure.assert_not_called()
        assert [r.url for r in transport.requests] == [
            BASE_URL + f"/Backups/big.bin-chunking-99-5-{i}" for i in range(5)
        ]
        assert all(r.headers["OC-Chunked"] == "1" for r in transport.requests)
        assert transport.bodies == [bytes(range(i, i + 10)) for i in range(0, 50, 10)]
        ## strictly one chunk at a time
        assert transport.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_credential_failure_stops_the_pass(self, local_file) -> None:
        transport = FakeTransport(failing_at(2, status=401))
        coordinator = make_coordinator(transport, local_file)

        outcome = await coordinator.run()

        assert outcome.kind == OutcomeKind.CREDENTIAL_FAILURE
        assert outcome.chunk_index == 2
        assert outcome.remote_path == REMOTE
        assert outcome.status == 401
        assert coordinator.state == UploadState.CREDENTIAL_FAILURE
        ## chunks 3 and 4 are never attempted
        assert len(transport.requests) == 3
        coordinator.on_failure.assert_called_once_with(outcome)
        coordinator.on_success.assert_not_called()
        assert coordinator.stream is None

    @pytest.mark.asyncio
    async def test_network_failure_is_recoverable(self, local_file) -> None:
        transport = FakeTransport(failing_at(1, exc=aiohttp.ClientConnectionError("reset")))
        coordinator = make_coordinator(transport, local_file)

        outcome = await coordinator.run()

        assert outcome.kind == OutcomeKind.RECOVERABLE_FAILURE
        assert outcome.retryable
        assert outcome.chunk_index == 1
        assert coordinator.state == UploadState.RECOVERABLE_FAILURE

    @pytest.mark.asyncio
    async def test_rejected_chunk(self, local_file) -> None:
        transport = FakeTransport(failing_at(0, status=507))
        coordinator = make_coordinator(transport, local_file)
        outcome = await coordinator.run()
        assert outcome.kind == OutcomeKind.REJECTED
        assert coordinator.state == UploadState.FAILED
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_resume_from_failed_chunk(self, local_file) -> None:
        first = FakeTransport(failing_at(3, status=503))
        outcome = await make_coordinator(first, local_file).run()
        assert outcome.chunk_index == 3

        second = FakeTransport()
        progress = []
        coordinator = make_coordinator(
            second,
            local_file,
            start_index=outcome.chunk_index,
            on_progress=lambda done, total: progress.append((done, total)),
        )
        outcome = await coordinator.run()

        assert outcome.ok
        assert [r.url[-1] for r in second.requests] == ["3", "4"]
        assert second.bodies == [bytes(range(30, 40)), bytes(range(40, 50))]
        ## acknowledged chunks count as uploaded from the start
        assert progress[0] == (30, 50)
        assert progress[-1] == (50, 50)

    @pytest.mark.asyncio
    async def test_progress_is_cumulative_and_monotonic(self, tmp_path) -> None:
        local = tmp_path / "sized.bin"
        local.write_bytes(b"z" * 450)
        chunks = [
            ChunkDescriptor(index=0, offset=0, length=100, remote_path=REMOTE + "-c-0"),
            ChunkDescriptor(index=1, offset=100, length=200, remote_path=REMOTE + "-c-1"),
            ChunkDescriptor(index=2, offset=300, length=150, remote_path=REMOTE + "-c-2"),
        ]
        progress = []
        coordinator = make_coordinator(
            FakeTransport(),
            str(local),
            chunks,
            on_progress=lambda done, total: progress.append((done, total)),
        )

        outcome = await coordinator.run()

        assert outcome.ok
        done = [d for d, _ in progress]
        assert done == sorted(done)
        assert {total for _, total in progress} == {450}
        assert done[0] == 0
        assert done[-1] == 450
        assert {100, 300, 450} <= set(done)

    @pytest.mark.asyncio
    async def test_token_cancels_chunk_in_flight(self, local_file) -> None:
        transport = FakeTransport(gate=asyncio.Event())
        token = CancellationToken()
        coordinator = make_coordinator(transport, local_file, token=token)
        task = asyncio.ensure_future(coordinator.run())
        await settle()
        assert len(transport.requests) == 1

        token.cancel()
        outcome = await task

        assert outcome.kind == OutcomeKind.CANCELLED
        assert outcome.chunk_index == 0
        assert coordinator.state == UploadState.CANCELLED
        assert coordinator.stream is None
        coordinator.on_success.assert_not_called()
        coordinator.on_failure.assert_not_called()
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_token_cancelled_before_start(self, local_file) -> None:
        transport = FakeTransport()
        token = CancellationToken()
        token.cancel()
        coordinator = make_coordinator(transport, local_file, token=token, start_index=1)

        outcome = await coordinator.run()

        assert outcome.kind == OutcomeKind.CANCELLED
        assert outcome.chunk_index == 1
        assert transport.requests == []
        coordinator.on_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_before_run(self, local_file) -> None:
        transport = FakeTransport()
        coordinator = make_coordinator(transport, local_file, start_index=2)
        coordinator.cancel()
        assert coordinator.state == UploadState.CANCELLED

        outcome = await coordinator.run()

        assert outcome.kind == OutcomeKind.CANCELLED
        assert outcome.chunk_index == 2
        assert transport.requests == []
        coordinator.on_success.assert_not_called()
        coordinator.on_failure.assert_not_called()
        with pytest.raises(RuntimeError):
            await coordinator.run()

    @pytest.mark.asyncio
    async def test_cancel_between_chunks(self, local_file) -> None:
        transport = FakeTransport()
        coordinator = None

        def on_progress(done, total):
            if done >= 20:
                coordinator.cancel()

        coordinator = make_coordinator(transport, local_file, on_progress=on_progress)
        outcome = await coordinator.run()
        assert outcome.kind == OutcomeKind.CANCELLED
        ## cancelled while chunk 1 was still being answered
        assert outcome.chunk_index == 1
        assert len(transport.requests) == 2
        coordinator.on_success.assert_not_called()

    @pytest.mark.asyncio
    async def test_outer_task_cancelled(self, local_file) -> None:
        transport = FakeTransport(gate=asyncio.Event())
        coordinator = make_coordinator(transport, local_file)
        task = asyncio.ensure_future(coordinator.run())
        await settle()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert coordinator.state == UploadState.CANCELLED
        assert coordinator.stream is None
        coordinator.on_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_runs_only_once(self, local_file) -> None:
        coordinator = make_coordinator(FakeTransport(), local_file)
        await coordinator.run()
        with pytest.raises(RuntimeError):
            await coordinator.run()

    def test_bad_arguments(self, local_file):
        with pytest.raises(ValueError):
            make_coordinator(FakeTransport(), local_file, start_index=5)
        with pytest.raises(ValueError):
            make_coordinator(FakeTransport(), local_file, chunks=[])
        chunks = plan_chunks(REMOTE, 50, 10)
        with pytest.raises(ValueError):
            make_coordinator(FakeTransport(), local_file, chunks=chunks[1:])
