"""A unit's task channel: publisher, user output and input subscriptions."""

from __future__ import annotations

import json
import re
import threading
import time
from typing import Any, Callable, Optional, Union

from .log import log_debug
from .pzmq import Mode, MsgCallback, Pzmq, PzmqError
from .pzmq_data import PzmqData
from .util import json_str_get, unit_call

LLM_NO_ERROR = ""
LLM_NONE = "None"

_PUBLISHER = -1
_PUSH = -2
_WORK_ID = re.compile(r"(\w+)\.(\d+)", re.ASCII)
_ACTION_FLAG = '"action"'

UserCallback = Callable[[str, str], None]


def send_raw_for_url(zmq_url: str, raw: Union[str, bytes]) -> int:
    """Push one message to ``zmq_url`` and return the number of bytes sent."""
    with Pzmq(zmq_url, Mode.PUSH) as endpoint:
        return endpoint.send_data(raw)


class LlmChannel:
    """Endpoints belonging to one work id of a unit."""

    def __init__(self, publisher_url: str, inference_url: str, unit_name: str) -> None:
        self.unit_name = unit_name
        self.inference_url = inference_url
        self.publisher_url = publisher_url
        self.enoutput = False
        self.enstream = False
        self.request_id = ""
        self.work_id = ""
        self.output_url = ""
        self._lock = threading.RLock()
        self._url_index = -1000
        self._url_map: dict[str, int] = {}
        self._endpoints: dict[int, Optional[Pzmq]] = {
            _PUBLISHER: Pzmq(publisher_url, Mode.PUB),
            _PUSH: None,
        }

    def _replace(self, key: int, endpoint: Optional[Pzmq]) -> None:
        with self._lock:
            old = self._endpoints.get(key)
            self._endpoints[key] = endpoint
        if old is not None:
            old.close()

    def _remove(self, key: int) -> None:
        with self._lock:
            old = self._endpoints.pop(key, None)
        if old is not None:
            old.close()

    def subscriber_event_call(self, call: UserCallback, pzmq: Pzmq, raw: PzmqData) -> None:
        """Handle a message from an input subscription and pass object and data on."""
        text = raw.string()
        pos = text.find(_ACTION_FLAG)
        while pos >= 0:
            if pos > 0 and text[pos - 1] != "\\":
                zmq_com = json_str_get(text, "zmq_com")
                if zmq_com:
                    self.set_push_url(zmq_com)
                self.request_id = json_str_get(text, "request_id")
                self.work_id = json_str_get(text, "work_id")
                break
            pos = text.find(_ACTION_FLAG, pos + len(_ACTION_FLAG))
        call(json_str_get(text, "object"), json_str_get(text, "data"))

    def subscriber_work_id(self, work_id: str, call: UserCallback) -> None:
        """Subscribe to another unit's output, or to this channel's inference input.

        An empty or malformed ``work_id`` selects the inference input. Raises
        ``LookupError`` when the other unit's output address is unknown.
        """
        match = _WORK_ID.fullmatch(work_id) if work_id else None
        if match is not None:
            id_num = int(match.group(2))
            subscriber_url = unit_call("sys", "sql_select", f"{work_id}.out_port")
            if not subscriber_url:
                raise LookupError(f"no output address for {work_id}")
        else:
            id_num = 0
            subscriber_url = self.inference_url
        endpoint = Pzmq(
            subscriber_url,
            Mode.SUB,
            lambda pzmq, raw: self.subscriber_event_call(call, pzmq, raw),
        )
        self._replace(id_num, endpoint)

    def stop_subscriber_work_id(self, work_id: str) -> None:
        """Stop the subscription made for ``work_id``."""
        match = _WORK_ID.fullmatch(work_id)
        self._remove(int(match.group(2)) if match is not None else 0)

    def subscriber(self, zmq_url: str, call: MsgCallback) -> None:
        """Subscribe to an arbitrary address with a raw message callback."""
        with self._lock:
            old_key = self._url_map.get(zmq_url)
            key = self._url_index
            self._url_index -= 1
            self._url_map[zmq_url] = key
        if old_key is not None:
            self._remove(old_key)
        self._replace(key, Pzmq(zmq_url, Mode.SUB, call))

    def stop_subscriber(self, zmq_url: str) -> None:
        """Stop the subscription to ``zmq_url``, or every subscription if it is empty."""
        with self._lock:
            if zmq_url:
                key = self._url_map.pop(zmq_url, None)
                keys = [] if key is None else [key]
            else:
                keys = [k for k in self._endpoints if k not in (_PUBLISHER, _PUSH)]
                self._url_map.clear()
        for key in keys:
            self._remove(key)

    def send_raw_to_pub(self, raw: Union[str, bytes]) -> int:
        """Publish one message; returns the number of bytes sent."""
        with self._lock:
            endpoint = self._endpoints.get(_PUBLISHER)
        if endpoint is None:
            raise PzmqError("channel has no publisher")
        return endpoint.send_data(raw)

    def send_raw_to_usr(self, raw: Union[str, bytes]) -> int:
        """Push one message to the user's output address."""
        with self._lock:
            endpoint = self._endpoints.get(_PUSH)
        if endpoint is None:
            raise PzmqError("channel has no output address")
        return endpoint.send_data(raw)

    def set_push_url(self, url: str) -> None:
        """Direct user output to ``url``; an unchanged address keeps the connection."""
        if self.output_url != url:
            self.output_url = url
            self._replace(_PUSH, Pzmq(url, Mode.PUSH))

    def clear_push_url(self) -> None:
        """Drop the user output connection."""
        self._replace(_PUSH, None)

    def send(self, object: str, data: Any, error_msg: Any = LLM_NO_ERROR, work_id: str = "") -> int:
        """Publish a response and, when output is enabled, push it to the user."""
        body = {
            "request_id": self.request_id,
            "work_id": work_id or self.work_id,
            "created": int(time.time()),
            "object": object,
            "data": data,
            "error": error_msg if error_msg else {"code": 0, "message": ""},
        }
        out = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False) + "\n"
        self.send_raw_to_pub(out)
        if self.enoutput:
            return self.send_raw_to_usr(out)
        return 0

    def close(self) -> None:
        """Close every endpoint of the channel."""
        with self._lock:
            endpoints = [e for e in self._endpoints.values() if e is not None]
            self._endpoints = {_PUBLISHER: None, _PUSH: None}
            self._url_map.clear()
        for endpoint in endpoints:
            endpoint.close()
        log_debug(f"channel {self.work_id or self.unit_name} closed")

    def __enter__(self) -> "LlmChannel":
        return self

    def __exit__(self, *args) -> None:
        self.close()