import asyncio

import pytest

from fixmate.errors import ProviderError
from fixmate.transport import ERROR_MARKER, StreamingTransport


async def drain(transport):
    return [chunk async for chunk in transport.body()]


@pytest.mark.asyncio
async def test_fragments_flow_through_in_order():
    transport = StreamingTransport()
    await transport.write("Check ")
    assert await transport.wait_opened() is None
    assert transport.started
    await transport.write("the cable.")
    await transport.close()

    assert await drain(transport) == ["Check ", "the cable."]


@pytest.mark.asyncio
async def test_fragments_are_available_before_close():
    transport = StreamingTransport()
    body = transport.body()
    await transport.write("first")
    assert await asyncio.wait_for(body.__anext__(), timeout=1) == "first"
    await transport.close()
    with pytest.raises(StopAsyncIteration):
        await body.__anext__()


@pytest.mark.asyncio
async def test_empty_reply_opens_on_close():
    transport = StreamingTransport()
    await transport.close()
    assert await transport.wait_opened() is None
    assert await drain(transport) == []


@pytest.mark.asyncio
async def test_failure_before_first_fragment_is_reported_to_the_caller():
    transport = StreamingTransport()
    error = ProviderError("bad key")
    await transport.fail(error)
    await transport.close()

    assert await transport.wait_opened() is error
    assert not transport.started


@pytest.mark.asyncio
async def test_failure_after_headers_appends_marker():
    transport = StreamingTransport()
    await transport.write("Step 1: ")
    await transport.fail(ProviderError("reset"))
    await transport.close()

    assert await drain(transport) == ["Step 1: ", ERROR_MARKER]


@pytest.mark.asyncio
async def test_writes_after_disconnect_are_noops():
    transport = StreamingTransport()
    body = transport.body()
    await transport.write("one")
    assert await body.__anext__() == "one"
    await body.aclose()

    assert transport.disconnected
    await transport.write("two")
    await transport.fail(ProviderError("late"))
    await transport.close()


@pytest.mark.asyncio
async def test_close_is_idempotent():
    transport = StreamingTransport()
    await transport.write("x")
    await transport.close()
    await transport.close()
    await transport.write("ignored")
    assert await drain(transport) == ["x"]
