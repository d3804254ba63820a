"""
Server-sent event decoding for streamed AI completions.

Chunks arrive as raw bytes that may split UTF-8 sequences, lines and JSON
payloads at arbitrary points. The decoder keeps one text buffer across
chunks and only acts on complete lines. A `data:` line whose JSON does not
parse yet goes back to the front of the buffer until more bytes arrive, so
a payload split across network chunks is emitted once, complete.
"""
import codecs
import json
import logging
from typing import AsyncIterator, List, Optional

import httpx

from models.internal import AnalysisFrame
from services.errors import DecodeError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
COMMENT_PREFIX = ":"
TERMINATOR = "[DONE]"


class _Incomplete(Exception):
    """The line looks like an event but its JSON is not complete yet."""


def _extract_delta(parsed) -> Optional[str]:
    """Pull the text delta from an OpenAI-style chunk: choices[0].delta.content."""
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None


def classify_line(line: str) -> Optional[AnalysisFrame]:
    """Turn one complete line into a frame, or None when the line carries nothing.

    Raises _Incomplete when a data line holds JSON that does not parse.
    """
    if line.endswith("\r"):
        line = line[:-1]
    if not line.strip() or line.startswith(COMMENT_PREFIX):
        return AnalysisFrame(event_kind="comment", payload=line[1:].strip())
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):].strip()
    if data == TERMINATOR:
        return AnalysisFrame(event_kind="done")
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        raise _Incomplete(data)
    content = _extract_delta(parsed)
    if content is None:
        return None
    return AnalysisFrame(event_kind="delta", payload=content)


class StreamDecoder:
    """Single-use decoder: idle -> reading -> (done | failed)."""

    def __init__(self):
        self.state = "idle"
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")()

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[AnalysisFrame]:
        if self.state != "idle":
            raise RuntimeError(f"StreamDecoder already used (state={self.state})")
        self.state = "reading"

        try:
            async for chunk in chunks:
                try:
                    self._buffer += self._utf8.decode(chunk)
                except UnicodeDecodeError as e:
                    raise DecodeError(f"Invalid UTF-8 in stream: {e}") from e

                for frame in self._drain_complete_lines():
                    yield frame
                    if frame.event_kind == "done":
                        self.state = "done"
                        return

            # Input ended without a terminator: best-effort flush, no retries
            try:
                self._buffer += self._utf8.decode(b"", final=True)
            except UnicodeDecodeError:
                logger.warning("Stream ended inside a UTF-8 sequence; dropping trailing bytes")
            for frame in self._flush_remaining():
                yield frame
            self.state = "done"
            yield AnalysisFrame(event_kind="done")

        except DecodeError:
            self.state = "failed"
            raise
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            self.state = "failed"
            raise DecodeError(f"Stream read failed: {e}") from e
        finally:
            if self.state == "reading":
                # Abandoned by the caller (cancelled or closed early)
                self.state = "failed"
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    def _drain_complete_lines(self) -> List[AnalysisFrame]:
        frames = []
        while True:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            try:
                frame = classify_line(line)
            except _Incomplete:
                # Put it back and wait for the rest of the payload
                self._buffer = line + "\n" + self._buffer
                break
            if frame is None or frame.event_kind == "comment":
                continue
            frames.append(frame)
            if frame.event_kind == "done":
                self._buffer = ""
                break
        return frames

    def _flush_remaining(self) -> List[AnalysisFrame]:
        frames = []
        remaining, self._buffer = self._buffer, ""
        for line in remaining.split("\n"):
            if not line:
                continue
            try:
                frame = classify_line(line)
            except _Incomplete:
                logger.debug(f"Discarding unparseable trailing line ({len(line)} chars)")
                continue
            if frame is None or frame.event_kind != "delta":
                continue
            frames.append(frame)
        return frames
