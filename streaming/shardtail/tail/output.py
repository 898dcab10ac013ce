"""Output writer for consumed payloads."""

from __future__ import annotations

import sys
from typing import TextIO


class StdoutWriter:
    """Writes each payload as one line of text.

    Payloads are decoded as UTF-8; undecodable bytes are replaced rather
    than failing the run. Each line is flushed so output can be piped.
    """

    def __init__(self, stream: TextIO | None = None, encoding: str = "utf-8") -> None:
        self._stream = stream
        self.encoding = encoding

    def __call__(self, payload: bytes) -> None:
        stream = self._stream or sys.stdout
        stream.write(payload.decode(self.encoding, errors="replace") + "\n")
        stream.flush()
