"""Tests for SSE decoding of streamed completions."""
import json

import httpx
import pytest

from services.errors import DecodeError
from services.stream_decoder import StreamDecoder, classify_line


def sse_line(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}) + "\n\n"


STREAM = (
    ": keep-alive\n\n"
    + sse_line("Bonjour, ")
    + sse_line("café ☕ ")
    + "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}) + "\r\n\r\n"
    + sse_line("done.")
    + "data: [DONE]\n\n"
).encode("utf-8")

EXPECTED = ["Bonjour, ", "café ☕ ", "done."]


class ChunkSource:
    """Async chunk iterator that remembers whether it was closed and how far it was read."""

    def __init__(self, chunks, error=None):
        self.chunks = list(chunks)
        self.error = error
        self.closed = False
        self.read = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.read < len(self.chunks):
            chunk = self.chunks[self.read]
            self.read += 1
            return chunk
        if self.error:
            raise self.error
        raise StopAsyncIteration

    async def aclose(self):
        self.closed = True


async def decode_all(chunks, decoder=None):
    decoder = decoder or StreamDecoder()
    frames = [frame async for frame in decoder.decode(ChunkSource(chunks))]
    return decoder, frames


def deltas(frames):
    return [f.payload for f in frames if f.event_kind == "delta"]


@pytest.mark.asyncio
async def test_single_chunk_yields_deltas_then_done():
    decoder, frames = await decode_all([STREAM])
    assert deltas(frames) == EXPECTED
    assert frames[-1].event_kind == "done"
    assert decoder.state == "done"


@pytest.mark.asyncio
async def test_every_two_way_split_matches_single_chunk():
    """Splitting anywhere, including inside multibyte characters and JSON tokens, changes nothing."""
    for cut in range(1, len(STREAM)):
        _, frames = await decode_all([STREAM[:cut], STREAM[cut:]])
        assert deltas(frames) == EXPECTED, f"split at byte {cut}"


@pytest.mark.asyncio
async def test_one_byte_chunks_match_single_chunk():
    _, frames = await decode_all([STREAM[i:i + 1] for i in range(len(STREAM))])
    assert deltas(frames) == EXPECTED
    assert [f.event_kind for f in frames].count("done") == 1


@pytest.mark.asyncio
async def test_json_cut_mid_payload_is_emitted_once_when_completed():
    line = sse_line("Hello world").encode()
    cut = line.index(b"world")
    _, frames = await decode_all([line[:cut], line[cut:]])
    assert deltas(frames) == ["Hello world"]


@pytest.mark.asyncio
async def test_unparseable_line_is_requeued_without_error_or_loss():
    chunks = [
        b'data: {"choices": [\n',
        sse_line("still delivered").encode(),
    ]
    decoder, frames = await decode_all(chunks)
    assert deltas(frames) == ["still delivered"]
    assert frames[-1].event_kind == "done"
    assert decoder.state == "done"


@pytest.mark.asyncio
async def test_terminator_stops_before_buffered_content():
    chunk = (sse_line("first") + "data: [DONE]\n\n" + sse_line("never")).encode()
    source = ChunkSource([chunk, sse_line("also never").encode()])
    decoder = StreamDecoder()
    frames = [f async for f in decoder.decode(source)]

    assert deltas(frames) == ["first"]
    assert frames[-1].event_kind == "done"
    assert source.read == 1
    assert source.closed


@pytest.mark.asyncio
async def test_end_of_input_without_terminator_flushes_and_finishes():
    chunk = (sse_line("a") + sse_line("b").rstrip("\n")).encode()
    decoder, frames = await decode_all([chunk])
    assert deltas(frames) == ["a", "b"]
    assert frames[-1].event_kind == "done"
    assert decoder.state == "done"


@pytest.mark.asyncio
async def test_invalid_utf8_fails_decoder():
    decoder = StreamDecoder()
    source = ChunkSource([b"data: \xff\xfe\n\n"])
    with pytest.raises(DecodeError):
        async for _ in decoder.decode(source):
            pass
    assert decoder.state == "failed"
    assert source.closed


@pytest.mark.asyncio
async def test_transport_error_becomes_decode_error():
    decoder = StreamDecoder()
    source = ChunkSource([sse_line("partial").encode()], error=httpx.ReadError("connection reset"))
    received = []
    with pytest.raises(DecodeError):
        async for frame in decoder.decode(source):
            received.append(frame)
    assert deltas(received) == ["partial"]
    assert decoder.state == "failed"


@pytest.mark.asyncio
async def test_decoder_cannot_be_reused():
    decoder, _ = await decode_all([STREAM])
    with pytest.raises(RuntimeError):
        async for _ in decoder.decode(ChunkSource([STREAM])):
            pass


@pytest.mark.asyncio
async def test_closing_early_closes_source():
    source = ChunkSource([sse_line("one").encode(), sse_line("two").encode()])
    decoder = StreamDecoder()
    frames = decoder.decode(source)
    first = await frames.__anext__()
    await frames.aclose()

    assert first.payload == "one"
    assert source.closed
    assert decoder.state == "failed"


def test_classify_line_ignores_comments_and_other_fields():
    assert classify_line(": ping").event_kind == "comment"
    assert classify_line("").event_kind == "comment"
    assert classify_line("event: message") is None
    assert classify_line("data: [DONE]\r").event_kind == "done"
