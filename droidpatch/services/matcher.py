# droidpatch/services/matcher.py
# Búsqueda de patrones: bytes literales o regex sobre texto latin-1.
from __future__ import annotations

import re
from typing import List, Union

Buffer = Union[bytes, bytearray]

# latin-1: 1 byte == 1 char, offsets de texto == offsets de bytes
TEXT_ENCODING = "latin-1"


def find_all(buf: Buffer, pattern: bytes) -> List[int]:
    """
    Offsets of every non-overlapping occurrence of `pattern`, ascending.
    The scan restarts right after the end of the previous match.
    """
    if not pattern:
        raise ValueError("empty pattern")
    hits = []
    i = 0
    L = len(pattern)
    while True:
        j = buf.find(pattern, i)
        if j < 0:
            break
        hits.append(j)
        i = j + L
    return hits


def contains(buf: Buffer, pattern: bytes) -> bool:
    return bool(pattern) and buf.find(pattern) >= 0


def decode(buf: Buffer) -> str:
    return bytes(buf).decode(TEXT_ENCODING)


def encode(text: str) -> bytes:
    return text.encode(TEXT_ENCODING)


def find_regex(buf: Buffer, regex: Union[str, "re.Pattern[str]"]) -> List["re.Match[str]"]:
    """Non-overlapping regex matches over the decoded buffer."""
    rx = re.compile(regex) if isinstance(regex, str) else regex
    return [m for m in rx.finditer(decode(buf)) if m.end() > m.start()]


def context(buf: Buffer, pos: int, length: int, size: int = 25) -> str:
    """Printable window around a hit; non-printables shown as '.'."""
    start = max(0, pos - size)
    end = min(len(buf), pos + length + size)
    return "".join(chr(c) if 32 <= c < 127 else "." for c in bytes(buf[start:end]))
