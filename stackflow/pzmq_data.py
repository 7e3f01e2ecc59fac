"""Message payloads and the length-prefixed two-parameter encoding."""

from __future__ import annotations

from typing import Union

BytesLike = Union[str, bytes, bytearray, memoryview]


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    return bytes(value)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _split(raw: bytes) -> tuple[bytes, bytes]:
    if not raw:
        raise ValueError("empty parameter block")
    length = raw[0]
    if length + 1 > len(raw):
        raise ValueError(f"parameter length {length} exceeds block of {len(raw)} bytes")
    return raw[1 : 1 + length], raw[1 + length :]


def set_param(param0: BytesLike, param1: BytesLike) -> bytes:
    """Pack two parameters: one length byte, the first parameter, then the second."""
    first = _to_bytes(param0)
    if len(first) > 255:
        raise ValueError("first parameter is longer than 255 bytes")
    return bytes([len(first)]) + first + _to_bytes(param1)


class PzmqData:
    """A received message."""

    __slots__ = ("payload",)

    def __init__(self, payload: BytesLike = b"") -> None:
        self.payload = _to_bytes(payload)

    def string(self) -> str:
        """Return the payload as text."""
        return _decode(self.payload)

    def __len__(self) -> int:
        return len(self.payload)

    def __bytes__(self) -> bytes:
        return self.payload

    def __repr__(self) -> str:
        return f"PzmqData({self.payload!r})"

    def get_param(self, index: int, idata: BytesLike = "") -> str:
        """Return the first parameter for an even index, the second for an odd one.

        The parameters are read from ``idata`` when it is not empty, otherwise
        from the payload.
        """
        raw = _to_bytes(idata) if idata else self.payload
        first, second = _split(raw)
        return _decode(first if index % 2 == 0 else second)