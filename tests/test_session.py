#!/usr/bin/env python
"""
Unit tests for DAVSession.

Rule: None of the tests in this file should initiate any internet
communication.  The transport is a FakeTransport answering from memory.
"""

import asyncio
import json
import os
from unittest import mock

import pytest

from fixture_helpers import BASE_URL, LISTING_XML, FakeTransport, response

import davtransfer
from davtransfer import DAVSession
from davtransfer.coordinator import UploadState
from davtransfer.io import AsyncIO
from davtransfer.lib import error
from davtransfer.operation import CancellationToken, OperationState
from davtransfer.protocol import DAVMethod, OutcomeKind, PropertyRecord, ResourceTree


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_session(transport, **kwargs):
    kwargs.setdefault("username", "alice")
    kwargs.setdefault("password", "secret")
    return DAVSession(BASE_URL, transport=transport, **kwargs)


class TestSessionSetup:
    @pytest.mark.asyncio
    async def test_default_transport(self) -> None:
        async with DAVSession(BASE_URL) as session:
            assert isinstance(session.transport, AsyncIO)
            request = session.protocol.get_request("/a.txt")
            assert request.headers["User-Agent"] == f"davtransfer/{davtransfer.__version__}"
            assert "Authorization" not in request.headers

    def test_credentials_from_parameters(self):
        session = make_session(FakeTransport())
        request = session.protocol.get_request("/a.txt")
        assert request.headers["Authorization"] == "Basic YWxpY2U6c2VjcmV0"

    def test_bearer_token(self):
        session = DAVSession(BASE_URL, transport=FakeTransport(), password="t0ken")
        request = session.protocol.get_request("/a.txt")
        assert request.headers["Authorization"] == "Bearer t0ken"

    def test_custom_credential_provider(self):
        provider = mock.Mock()
        provider.headers.return_value = {"Authorization": "Bearer fresh"}
        session = DAVSession(BASE_URL, transport=FakeTransport(), credentials=provider)
        assert session.protocol.get_request("/a").headers["Authorization"] == "Bearer fresh"
        assert session.protocol.get_request("/b").headers["Authorization"] == "Bearer fresh"
        assert provider.headers.call_count == 2

    @pytest.mark.asyncio
    async def test_close_leaves_foreign_transport_open(self) -> None:
        transport = FakeTransport()
        async with make_session(transport):
            pass
        assert not transport.closed


class TestListing:
    @pytest.mark.asyncio
    async def test_list(self) -> None:
        transport = FakeTransport(lambda request: response(207, LISTING_XML))
        on_success = mock.Mock()
        async with make_session(transport) as session:
            operation = session.list("/Documents/", on_success=on_success)
            outcome = await operation.wait()

        assert outcome.ok
        tree = outcome.payload
        assert isinstance(tree, ResourceTree)
        assert tree.self_entry.href == "/Documents/"
        assert [path for path, _ in tree.children] == [
            "/Documents/report 2023.pdf",
            "/Documents/Photos/",
        ]
        on_success.assert_called_once_with(tree)
        request = transport.requests[0]
        assert request.method == DAVMethod.PROPFIND
        assert request.headers["Depth"] == "1"

    @pytest.mark.asyncio
    async def test_list_without_trailing_slash(self) -> None:
        transport = FakeTransport(lambda request: response(207, LISTING_XML))
        async with make_session(transport) as session:
            outcome = await session.list("/Documents").wait()
        tree = outcome.payload
        assert tree.paths[0] == "/Documents"
        assert tree.self_entry.href == "/Documents"
        assert tree.get("/Documents/report 2023.pdf") is not None

    @pytest.mark.asyncio
    async def test_properties(self) -> None:
        transport = FakeTransport(lambda request: response(207, LISTING_XML))
        async with make_session(transport) as session:
            outcome = await session.properties("/Documents/").wait()
        assert isinstance(outcome.payload, PropertyRecord)
        assert outcome.payload.ctag == "ctag-17"
        assert transport.requests[0].headers["Depth"] == "0"

    @pytest.mark.asyncio
    async def test_list_with_rejected_credentials(self) -> None:
        transport = FakeTransport(lambda request: response(401))
        on_success = mock.Mock()
        on_failure = mock.Mock()
        async with make_session(transport) as session:
            outcome = await session.list("/", on_success, on_failure).wait()
        assert outcome.kind == OutcomeKind.CREDENTIAL_FAILURE
        on_failure.assert_called_once_with(outcome)
        on_success.assert_not_called()

    def test_invalid_path_raises_at_once(self):
        session = make_session(FakeTransport())
        with pytest.raises(error.InvalidPathError):
            session.list("/../secrets/")


class TestMutations:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call, method",
        [
            (lambda s: s.copy("/a.txt", "/b.txt"), DAVMethod.COPY),
            (lambda s: s.move("/a.txt", "/b.txt", overwrite=False), DAVMethod.MOVE),
            (lambda s: s.delete("/a.txt"), DAVMethod.DELETE),
            (lambda s: s.mkcol("/New/"), DAVMethod.MKCOL),
        ],
    )
    async def test_mutation(self, call, method) -> None:
        transport = FakeTransport()
        async with make_session(transport) as session:
            outcome = await call(session).wait()
        assert outcome.ok
        assert outcome.payload is None
        assert transport.requests[0].method == method

    @pytest.mark.asyncio
    async def test_move_conflict(self) -> None:
        transport = FakeTransport(lambda request: response(412))
        async with make_session(transport) as session:
            outcome = await session.move("/a.txt", "/b.txt", overwrite=False).wait()
        assert outcome.kind == OutcomeKind.REJECTED
        assert outcome.status == 412
        assert not outcome.retryable


class TestQueueing:
    @pytest.mark.asyncio
    async def test_concurrency_limit(self) -> None:
        transport = FakeTransport(gate=asyncio.Event())
        async with make_session(transport, max_concurrent=2) as session:
            operations = [session.delete(f"/file{i}.txt") for i in range(5)]
            await settle()
            assert transport.in_flight == 2
            transport.gate.set()
            outcomes = await asyncio.gather(*(op.wait() for op in operations))
        assert all(o.ok for o in outcomes)
        assert transport.max_in_flight == 2
        assert len(transport.requests) == 5

    @pytest.mark.asyncio
    async def test_cancel_operation_waiting_for_a_slot(self) -> None:
        transport = FakeTransport(gate=asyncio.Event())
        on_success = mock.Mock()
        on_failure = mock.Mock()
        async with make_session(transport, max_concurrent=1) as session:
            first = session.delete("/first.txt")
            second = session.delete("/second.txt", on_success, on_failure)
            await settle()

            session.queue.cancel(second.handle)
            with pytest.raises(asyncio.CancelledError):
                await second.wait()
            assert second.state == OperationState.CANCELLED

            transport.gate.set()
            assert (await first.wait()).ok
        assert len(transport.requests) == 1
        on_success.assert_not_called()
        on_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_chunked_upload_waiting_for_a_slot(self, tmp_path) -> None:
        local = tmp_path / "big.bin"
        local.write_bytes(b"b" * 100)
        transport = FakeTransport(gate=asyncio.Event())
        on_success = mock.Mock()
        on_failure = mock.Mock()
        async with make_session(transport, max_concurrent=1, chunk_size=10) as session:
            first = session.delete("/first.txt")
            coordinator = session.upload_chunked(str(local), "/big.bin", on_success, on_failure)
            await settle()

            session.queue.cancel(coordinator.handle)
            await settle()
            assert coordinator.state == UploadState.CANCELLED
            assert coordinator.done
            assert coordinator not in session._coordinators

            transport.gate.set()
            assert (await first.wait()).ok
        assert len(transport.requests) == 1
        on_success.assert_not_called()
        on_failure.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_cancels_everything(self) -> None:
        transport = FakeTransport(gate=asyncio.Event())
        on_failure = mock.Mock()
        session = make_session(transport, max_concurrent=1)
        operations = [session.delete(f"/f{i}", on_failure=on_failure) for i in range(3)]
        await settle()
        await session.close()
        assert all(op.cancelled for op in operations)
        on_failure.assert_not_called()


class TestDownload:
    @pytest.mark.asyncio
    async def test_download(self, tmp_path) -> None:
        transport = FakeTransport(lambda request: response(200), download=b"hello world!")
        target = tmp_path / "hello.txt"
        progress = []
        async with make_session(transport) as session:
            outcome = await session.download(
                "/hello.txt",
                str(target),
                on_progress=lambda done, total: progress.append(done),
            ).wait()

        assert outcome.ok
        assert outcome.payload == str(target)
        assert target.read_bytes() == b"hello world!"
        assert not os.path.exists(str(target) + ".part")
        assert progress == sorted(progress)
        assert progress[-1] == 12

    @pytest.mark.asyncio
    async def test_empty_download(self, tmp_path) -> None:
        transport = FakeTransport(lambda request: response(200))
        target = tmp_path / "empty.txt"
        async with make_session(transport) as session:
            outcome = await session.download("/empty.txt", str(target)).wait()
        assert outcome.ok
        assert target.read_bytes() == b""

    @pytest.mark.asyncio
    async def test_failed_download_leaves_nothing(self, tmp_path) -> None:
        transport = FakeTransport(lambda request: response(404), download=b"not found")
        target = tmp_path / "missing.txt"
        async with make_session(transport) as session:
            outcome = await session.download("/missing.txt", str(target)).wait()
        assert outcome.kind == OutcomeKind.REJECTED
        assert not target.exists()
        assert not os.path.exists(str(target) + ".part")

    @pytest.mark.asyncio
    async def test_download_that_cannot_be_stored_is_rejected(self, tmp_path) -> None:
        transport = FakeTransport(lambda request: response(200), download=b"hello world!")
        target = tmp_path / "no-such-dir" / "hello.txt"
        on_failure = mock.Mock()
        async with make_session(transport) as session:
            outcome = await session.download("/hello.txt", str(target), on_failure=on_failure).wait()
        assert outcome.kind == OutcomeKind.REJECTED
        assert isinstance(outcome.error, error.RejectedError)
        on_failure.assert_called_once_with(outcome)
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_cancelled_download_leaves_nothing(self, tmp_path) -> None:
        transport = FakeTransport(gate=asyncio.Event(), download=b"data")
        token = CancellationToken()
        target = tmp_path / "slow.txt"
        async with make_session(transport) as session:
            operation = session.download("/slow.txt", str(target), token=token)
            await settle()
            token.cancel()
            with pytest.raises(asyncio.CancelledError):
                await operation.wait()
            await session.queue.join()
        assert not target.exists()
        assert not os.path.exists(str(target) + ".part")


class TestUpload:
    @pytest.mark.asyncio
    async def test_put_bytes(self) -> None:
        transport = FakeTransport()
        async with make_session(transport) as session:
            outcome = await session.put(b"note", "/note.txt").wait()
        assert outcome.ok
        assert transport.bodies == [b"note"]
        assert transport.requests[0].headers["Content-Length"] == "4"

    @pytest.mark.asyncio
    async def test_upload_streams_the_file(self, tmp_path) -> None:
        local = tmp_path / "photo.jpg"
        local.write_bytes(b"\xff\xd8" + b"j" * 1000)
        transport = FakeTransport()
        progress = []
        async with make_session(transport) as session:
            outcome = await session.upload(
                str(local),
                "/Photos/photo.jpg",
                on_progress=lambda done, total: progress.append((done, total)),
            ).wait()
        assert outcome.ok
        assert transport.bodies == [local.read_bytes()]
        request = transport.requests[0]
        assert request.method == DAVMethod.PUT
        assert request.headers["Content-Length"] == "1002"
        assert "OC-Chunked" not in request.headers
        assert progress[-1] == (1002, 1002)

    @pytest.mark.asyncio
    async def test_upload_chunked(self, tmp_path) -> None:
        local = tmp_path / "video.mp4"
        local.write_bytes(os.urandom(95))
        transport = FakeTransport()
        on_success = mock.Mock()
        async with make_session(transport, chunk_size=30) as session:
            coordinator = session.upload_chunked(str(local), "/Videos/video.mp4", on_success)
            outcome = await session.queue.wait(coordinator.handle)
        assert outcome.ok
        on_success.assert_called_once_with("/Videos/video.mp4")
        assert len(transport.requests) == 4
        assert all("-chunking-" in r.url for r in transport.requests)
        assert b"".join(transport.bodies) == local.read_bytes()

    @pytest.mark.asyncio
    async def test_upload_chunked_resume(self, tmp_path) -> None:
        local = tmp_path / "video.mp4"
        local.write_bytes(os.urandom(95))
        failed = {"done": False}

        def responder(request):
            if request.url.endswith("-2") and not failed["done"]:
                failed["done"] = True
                return response(401)
            return response(201)

        transport = FakeTransport(responder)
        async with make_session(transport, chunk_size=30) as session:
            first = session.upload_chunked(str(local), "/v.mp4")
            outcome = await session.queue.wait(first.handle)
            assert outcome.kind == OutcomeKind.CREDENTIAL_FAILURE
            assert outcome.chunk_index == 2

            second = session.upload_chunked(str(local), "/v.mp4", start_index=outcome.chunk_index)
            outcome = await session.queue.wait(second.handle)
        assert outcome.ok
        assert [r.url[-1] for r in transport.requests] == ["0", "1", "2", "2", "3"]

    @pytest.mark.asyncio
    async def test_cancel_all_stops_chunked_upload(self, tmp_path) -> None:
        local = tmp_path / "big.bin"
        local.write_bytes(b"b" * 100)
        transport = FakeTransport(gate=asyncio.Event())
        async with make_session(transport, chunk_size=10) as session:
            coordinator = session.upload_chunked(str(local), "/big.bin")
            await settle()
            session.cancel_all()
            await session.queue.join()
        assert coordinator.done
        assert len(transport.requests) == 1


class TestUserName:
    @pytest.mark.asyncio
    async def test_request_user_name(self) -> None:
        body = json.dumps({"ocs": {"data": {"id": "alice"}}}).encode()
        transport = FakeTransport(lambda request: response(200, body))
        async with make_session(transport) as session:
            outcome = await session.request_user_name(cookie="nc_session_id=abc").wait()
        assert outcome.payload == "alice"
        request = transport.requests[0]
        assert request.url == "https://cloud.example.com/ocs/v1.php/cloud/user?format=json"
        assert request.headers["Cookie"] == "nc_session_id=abc"

    @pytest.mark.asyncio
    async def test_request_user_name_malformed(self) -> None:
        transport = FakeTransport(lambda request: response(200, b"<html>login</html>"))
        async with make_session(transport) as session:
            outcome = await session.request_user_name().wait()
        assert outcome.kind == OutcomeKind.MALFORMED_RESPONSE
