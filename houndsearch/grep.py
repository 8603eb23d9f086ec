"""Line oriented regular expression search with optional context lines."""

from __future__ import annotations

import gzip
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import BinaryIO

_NL = b"\n"
_CHUNK_SIZE = 1 << 20


@dataclass
class GrepMatch:
    """A matching line, its 1-based number and the lines around it."""

    line: bytes
    line_number: int
    before: list[bytes] = field(default_factory=list)
    after: list[bytes] = field(default_factory=list)


def count_lines(data: bytes) -> int:
    """The number of newline characters in ``data``."""
    return data.count(_NL)


def first_n_lines(data: bytes, n: int) -> list[bytes]:
    """Up to ``n`` leading lines of ``data``, without their newlines."""
    if not data or n == 0:
        return []
    lines: list[bytes] = []
    for _ in range(n):
        end = data.find(_NL)
        if end < 0:
            if data:
                lines.append(data)
            break
        lines.append(data[:end])
        data = data[end + 1 :]
    return lines


def last_n_lines(data: bytes, n: int) -> list[bytes]:
    """Up to ``n`` trailing lines of ``data``, without their newlines."""
    if not data or n == 0:
        return []
    lines: list[bytes] = []
    for _ in range(n):
        start = data.rfind(_NL)
        if start < 0:
            if data:
                lines.append(data)
            break
        lines.append(data[start + 1 :])
        data = data[:start]
    lines.reverse()
    return lines


def grep_with_context(
    data: bytes, regex: re.Pattern[bytes], context: int = 0
) -> Iterator[GrepMatch]:
    """Yield each line of ``data`` that ``regex`` matches.

    After a match, searching resumes on the text following the matched
    line, so context lines before a match never reach back past the
    previous matched line.
    """
    lineno = 0
    while data:
        found = regex.search(data)
        if found is None:
            return

        line_end = data.find(_NL, found.start())
        if line_end < 0:
            line_end = len(data)
        start = data.rfind(_NL, 0, line_end) + 1
        previous_end = max(start - 1, 0)
        end = min(line_end + 1, len(data))

        lineno += data.count(_NL, 0, start)
        yield GrepMatch(
            line=data[start:end].rstrip(_NL),
            line_number=lineno + 1,
            before=last_n_lines(data[:previous_end], context),
            after=first_n_lines(data[end:], context),
        )
        lineno += 1
        data = data[end:]


def grep_lines(stream: BinaryIO, regex: re.Pattern[bytes]) -> Iterator[GrepMatch]:
    """Yield matching lines from a binary stream, read in large chunks."""
    buf = b""
    lineno = 1
    while True:
        chunk = stream.read(_CHUNK_SIZE)
        at_eof = not chunk
        buf += chunk
        end = len(buf) if at_eof else buf.rfind(_NL) + 1

        start = 0
        while start < end:
            found = regex.search(buf, start, end)
            if found is None:
                break
            previous = buf.rfind(_NL, start, found.start())
            line_start = previous + 1 if previous >= 0 else start
            newline = buf.find(_NL, found.start(), end)
            line_end = newline + 1 if newline >= 0 else end
            lineno += buf.count(_NL, start, line_start)
            yield GrepMatch(line=buf[line_start:line_end].rstrip(_NL), line_number=lineno)
            lineno += 1
            start = line_end

        if at_eof:
            return
        lineno += buf.count(_NL, start, end)
        buf = buf[end:]


def grep_file(
    filename: str, regex: re.Pattern[bytes], context: int = 0
) -> Iterator[GrepMatch]:
    """Yield matching lines of a gzip compressed file."""
    with gzip.open(filename, "rb") as handle:
        data = handle.read()
    yield from grep_with_context(data, regex, context)