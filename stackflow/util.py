"""Helpers for work ids, lenient JSON field lookup, streamed input and unit RPC calls."""

from __future__ import annotations

import re
from typing import Callable, Optional, Union

from .log import log_debug
from .pzmq import Pzmq, PzmqError
from .pzmq_data import PzmqData

WORK_ID_NONE = -100

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _stoi(text: str) -> int:
    """Parse the leading integer of ``text``; trailing characters are ignored."""
    match = _LEADING_INT.match(text)
    if match is None:
        raise ValueError(f"no integer at the start of {text!r}")
    return int(match.group(1))


def json_str_get(json_str: str, json_key: str) -> str:
    """Return the raw value of ``json_key`` from a JSON text without parsing it.

    String values come back without their quotes, object values as their
    text, other values as the characters up to the next ``,`` or ``}``.
    An empty string is returned when the key is missing or the value is
    not terminated.
    """
    find_key = f'"{json_key}"'
    start = json_str.find(find_key)
    if start < 0:
        return ""
    status = 0
    last_c = ""
    depth = 0
    value: list[str] = []
    for c in json_str[start + len(find_key):]:
        if status == 0:
            if c == '"':
                status = 100
            elif c == "{":
                value.append(c)
                depth = 1
                status = 10
            elif c == ":":
                depth = 1
            elif c in ",}":
                depth = 0
                break
            elif c == " ":
                pass
            elif depth:
                value.append(c)
        elif status == 10:
            value.append(c)
            if c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
            if depth == 0:
                break
        elif status == 100:
            if c == '"' and last_c != "\\":
                depth = 0
                break
            value.append(c)
        last_c = c
    if depth != 0:
        return ""
    return "".join(value)


def get_work_id_num(work_id: str) -> int:
    """Return the number after the first dot, or ``WORK_ID_NONE`` if there is none."""
    dot = work_id.find(".")
    if dot < 0 or dot == len(work_id) - 1:
        return WORK_ID_NONE
    return _stoi(work_id[dot + 1:])


def get_work_id_name(work_id: str) -> str:
    """Return the unit name part of a work id."""
    return work_id.partition(".")[0]


def get_work_id(work_id_num: int, unit_name: str) -> str:
    """Build a work id from a unit name and number."""
    return f"{unit_name}.{work_id_num}"


def decode_stream(data: str, stream_buff: dict[int, str]) -> Optional[str]:
    """Collect one streamed chunk into ``stream_buff``.

    Returns the assembled text once the final chunk has arrived, clearing the
    buffer, and ``None`` while more chunks are expected. Raises ``ValueError``
    for a chunk without a valid index and ``KeyError`` when a chunk is missing.
    """
    index = _stoi(json_str_get(data, "index"))
    finish = json_str_get(data, "finish")
    stream_buff[index] = json_str_get(data, "delta")
    if "f" in finish:
        return None
    text = "".join(stream_buff[i] for i in range(len(stream_buff)))
    stream_buff.clear()
    return text


def unit_call(
    unit_name: str,
    unit_action: str,
    data: Union[str, bytes],
    callback: Optional[Callable[[PzmqData], None]] = None,
) -> str:
    """Call an action on a unit's RPC server and return the reply text.

    ``callback``, if given, receives the reply message. An unreachable unit
    gives an empty reply and the callback is not called.
    """
    endpoint = Pzmq(unit_name)
    try:
        reply = endpoint.call_rpc_action(
            unit_action, data, None if callback is None else (lambda _pzmq, raw: callback(raw))
        )
    except PzmqError as exc:
        log_debug(f"call {unit_name}.{unit_action} failed: {exc}")
        return ""
    return reply.string()


def file_exists(path: str) -> bool:
    """Whether ``path`` can be opened for reading."""
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False


def unicode_to_utf8(codepoint: int) -> bytes:
    """Encode a code point as UTF-8; surrogates are encoded too, out-of-range values give b''."""
    if codepoint < 0:
        return b""
    if codepoint <= 0x7F:
        return bytes([codepoint])
    if codepoint <= 0x7FF:
        return bytes([0xC0 | ((codepoint >> 6) & 0x1F), 0x80 | (codepoint & 0x3F)])
    if codepoint <= 0xFFFF:
        return bytes(
            [
                0xE0 | ((codepoint >> 12) & 0x0F),
                0x80 | ((codepoint >> 6) & 0x3F),
                0x80 | (codepoint & 0x3F),
            ]
        )
    if codepoint <= 0x10FFFF:
        return bytes(
            [
                0xF0 | ((codepoint >> 18) & 0x07),
                0x80 | ((codepoint >> 12) & 0x3F),
                0x80 | ((codepoint >> 6) & 0x3F),
                0x80 | (codepoint & 0x3F),
            ]
        )
    return b""