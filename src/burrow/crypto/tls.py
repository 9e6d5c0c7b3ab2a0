# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""TLS presentation-language codec.

MLS and the Marmot group-data extension are both specified in the TLS
presentation language (RFC 8446 §3): big-endian fixed-width integers,
fixed-length opaque vectors and variable-length vectors with a 1, 2 or 4
byte length prefix.

Reads are bounds-checked: a read that would run past the end of the buffer
raises :class:`TLSDecodeError` rather than returning a short slice.
"""

from __future__ import annotations

import struct

from ..core.exceptions import BurrowException

_PREFIX_FORMATS = {1: ">B", 2: ">H", 4: ">I"}


class TLSDecodeError(BurrowException):
    """Raised when a TLS-encoded structure is truncated or malformed."""


class TLSWriter:
    """Accumulates TLS-encoded fields into a byte buffer."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def uint8(self, value: int) -> TLSWriter:
        self._parts.append(struct.pack(">B", value))
        return self

    def uint16(self, value: int) -> TLSWriter:
        self._parts.append(struct.pack(">H", value))
        return self

    def uint32(self, value: int) -> TLSWriter:
        self._parts.append(struct.pack(">I", value))
        return self

    def uint64(self, value: int) -> TLSWriter:
        self._parts.append(struct.pack(">Q", value))
        return self

    def fixed(self, data: bytes, length: int) -> TLSWriter:
        """Write an ``opaque data[length]`` field."""
        if len(data) != length:
            raise ValueError(f"expected {length} bytes, got {len(data)}")
        self._parts.append(bytes(data))
        return self

    def opaque(self, data: bytes, prefix: int = 2) -> TLSWriter:
        """Write an ``opaque data<0..2^(8*prefix)-1>`` field."""
        fmt = _PREFIX_FORMATS.get(prefix)
        if fmt is None:
            raise ValueError(f"unsupported length prefix: {prefix}")
        if len(data) >= 1 << (8 * prefix):
            raise ValueError(f"vector too long for {prefix}-byte prefix: {len(data)}")
        self._parts.append(struct.pack(fmt, len(data)))
        self._parts.append(bytes(data))
        return self

    def raw(self, data: bytes) -> TLSWriter:
        self._parts.append(bytes(data))
        return self

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class TLSReader:
    """Sequential, bounds-checked reader over a TLS-encoded buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, length: int, what: str) -> bytes:
        if length < 0 or self._pos + length > len(self._data):
            raise TLSDecodeError(
                f"truncated input reading {what}",
                {"offset": self._pos, "needed": length, "available": self.remaining},
            )
        chunk = self._data[self._pos : self._pos + length]
        self._pos += length
        return chunk

    def uint8(self, what: str = "uint8") -> int:
        return struct.unpack(">B", self._take(1, what))[0]

    def uint16(self, what: str = "uint16") -> int:
        return struct.unpack(">H", self._take(2, what))[0]

    def uint32(self, what: str = "uint32") -> int:
        return struct.unpack(">I", self._take(4, what))[0]

    def uint64(self, what: str = "uint64") -> int:
        return struct.unpack(">Q", self._take(8, what))[0]

    def fixed(self, length: int, what: str = "opaque") -> bytes:
        return self._take(length, what)

    def opaque(self, prefix: int = 2, what: str = "vector") -> bytes:
        fmt = _PREFIX_FORMATS.get(prefix)
        if fmt is None:
            raise ValueError(f"unsupported length prefix: {prefix}")
        (length,) = struct.unpack(fmt, self._take(prefix, f"{what} length"))
        return self._take(length, what)

    def expect_end(self) -> None:
        """Raise if any bytes remain unread."""
        if self.remaining:
            raise TLSDecodeError(
                f"{self.remaining} trailing bytes after structure",
                {"offset": self._pos},
            )
