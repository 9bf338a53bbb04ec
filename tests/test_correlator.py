"""Tests for request/response correlation."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from webaibridge.services.bridge_types import RequestTimeout, TransportUnavailable
from webaibridge.services.correlator import RequestCorrelator, new_request_id


class _Outbox:
    def __init__(self, *, open_: bool = True) -> None:
        self.open = open_
        self.sent: list[dict[str, Any]] = []

    def __call__(self, message: Mapping[str, Any]) -> None:
        if not self.open:
            raise TransportUnavailable("not connected")
        self.sent.append(dict(message))


async def _wait_for_send(outbox: _Outbox, count: int = 1) -> dict[str, Any]:
    while len(outbox.sent) < count:
        await asyncio.sleep(0)
    return outbox.sent[count - 1]


@pytest.mark.asyncio
async def test_send_fails_immediately_when_disconnected() -> None:
    correlator = RequestCorrelator(_Outbox(open_=False))

    with pytest.raises(TransportUnavailable):
        await correlator.send({"type": "GET_CONTEXT", "contextType": "selection"})

    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_response_resolves_matching_request() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_CONTEXT", "contextType": "selection"}))
    request = await _wait_for_send(outbox)
    assert request["type"] == "GET_CONTEXT"
    assert correlator.is_pending(request["requestId"])

    handled = correlator.handle_response(
        {"type": "CONTEXT_RESPONSE", "requestId": request["requestId"], "text": "hello"}
    )

    assert handled
    response = await task
    assert response["text"] == "hello"
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_timeout_then_late_response_is_ignored() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_FILE_LIST"}, timeout_ms=20))
    request = await _wait_for_send(outbox)

    with pytest.raises(RequestTimeout) as excinfo:
        await task
    assert excinfo.value.request_id == request["requestId"]

    late = {"type": "FILE_LIST_RESPONSE", "requestId": request["requestId"], "files": []}
    assert correlator.handle_response(late) is False
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_unknown_request_ids_are_dropped() -> None:
    correlator = RequestCorrelator(_Outbox())

    assert correlator.handle_response({"type": "CONTEXT_RESPONSE", "requestId": "nope"}) is False
    assert correlator.handle_response({"type": "CONTEXT_RESPONSE"}) is False


@pytest.mark.asyncio
async def test_stream_parts_are_reassembled_by_total_size() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_CONTEXT", "contextType": "file"}))
    request_id = (await _wait_for_send(outbox))["requestId"]

    base = {"type": "CONTEXT_RESPONSE_STREAM", "requestId": request_id, "totalSize": 11}
    assert correlator.handle_response({**base, "chunks": ["hello", " "]})
    assert not task.done()
    assert correlator.handle_response({**base, "chunk": "world"})

    response = await task
    assert response["type"] == "CONTEXT_RESPONSE"
    assert response["text"] == "hello world"
    assert response["streamed"] is True
    assert "chunks" not in response and "chunk" not in response


@pytest.mark.asyncio
async def test_stream_done_flag_completes_request() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_CONTEXT", "contextType": "file"}))
    request_id = (await _wait_for_send(outbox))["requestId"]

    correlator.handle_response(
        {"type": "CONTEXT_RESPONSE_STREAM", "requestId": request_id, "chunks": "ab", "done": False}
    )
    await asyncio.sleep(0)
    assert not task.done()
    correlator.handle_response(
        {"type": "CONTEXT_RESPONSE_STREAM", "requestId": request_id, "chunks": "cd", "done": True}
    )

    assert (await task)["text"] == "abcd"


@pytest.mark.asyncio
async def test_stream_chunk_objects_contribute_their_text() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_CONTEXT", "contextType": "file"}))
    request_id = (await _wait_for_send(outbox))["requestId"]

    correlator.handle_response(
        {
            "type": "CONTEXT_RESPONSE_STREAM",
            "requestId": request_id,
            "chunks": [{"text": "abc"}, {"text": "def"}, {"index": 3}],
            "done": True,
        }
    )

    assert (await task)["text"] == "abcdef"


@pytest.mark.asyncio
async def test_concurrent_requests_resolve_independently() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    first = asyncio.create_task(correlator.send({"type": "GET_CONTEXT", "contextType": "a"}))
    second = asyncio.create_task(correlator.send({"type": "GET_CONTEXT", "contextType": "b"}))
    await _wait_for_send(outbox, 2)
    ids = [message["requestId"] for message in outbox.sent]
    assert ids[0] != ids[1]

    correlator.handle_response({"type": "CONTEXT_RESPONSE", "requestId": ids[1], "text": "B"})
    correlator.handle_response({"type": "CONTEXT_RESPONSE", "requestId": ids[0], "text": "A"})

    assert (await first)["text"] == "A"
    assert (await second)["text"] == "B"


@pytest.mark.asyncio
async def test_cancel_all_cancels_waiters() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_CONTEXT_INFO"}))
    await _wait_for_send(outbox)
    correlator.cancel_all()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_cancelled_caller_releases_pending_entry() -> None:
    outbox = _Outbox()
    correlator = RequestCorrelator(outbox)

    task = asyncio.create_task(correlator.send({"type": "GET_CONTEXT_INFO"}))
    await _wait_for_send(outbox)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert correlator.pending_count == 0


def test_request_ids_are_unique() -> None:
    ids = {new_request_id() for _ in range(500)}

    assert len(ids) == 500
    assert all("-" in request_id for request_id in ids)
