"""
Server-sent events parsing for streamed completions.

OpenAI-compatible servers stream `data: {json}` lines separated by blank
lines and finish with `data: [DONE]`. Network chunks do not respect line
boundaries (or UTF-8 character boundaries), so bytes are buffered until a
full line is available.
"""

import codecs
import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional

import structlog


logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def _data_field(line: str) -> Optional[str]:
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


def is_done_line(line: str) -> bool:
    """True for the `data: [DONE]` end-of-stream sentinel."""
    return _data_field(line) == DONE_SENTINEL


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse one SSE line into a chunk.

    Returns None for lines that carry no chunk: comments, blank
    keep-alives, other SSE fields, the [DONE] sentinel and malformed JSON.
    """
    data = _data_field(line)
    if not data or data == DONE_SENTINEL:
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream chunk", data=data[:200])
        return None
    if not isinstance(chunk, dict):
        return None
    return chunk


async def iter_sse_chunks(byte_stream: AsyncIterable[bytes]) -> AsyncIterator[Dict[str, Any]]:
    """
    Yield decoded JSON chunks from an SSE byte stream until [DONE].

    A stream that ends without the sentinel simply stops; a trailing line
    without a newline is still parsed.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for raw in byte_stream:
        buffer += decoder.decode(raw)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            if is_done_line(line):
                return
            chunk = parse_sse_line(line)
            if chunk is not None:
                yield chunk

    buffer += decoder.decode(b"", final=True)
    if buffer and not is_done_line(buffer):
        chunk = parse_sse_line(buffer)
        if chunk is not None:
            yield chunk


def extract_delta_content(chunk: Dict[str, Any]) -> str:
    """Text delta of a chat completion chunk, empty if the chunk has none."""
    choices = chunk.get("choices") or []
    if not choices:
        return ""
    first = choices[0] or {}
    delta = first.get("delta") or {}
    content = delta.get("content")
    if content is None:
        # Completion endpoints stream `text` instead of a delta
        content = first.get("text")
    return content or ""
