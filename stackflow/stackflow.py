"""Base class for a unit: RPC control actions, an event loop and task channels."""

from __future__ import annotations

import enum
import json
import queue
import threading
import time
from typing import Any, Callable, Optional, Union

from .channel import LLM_NO_ERROR, LlmChannel
from .log import log_error, log_info
from .pzmq import Mode, Pzmq, PzmqError
from .pzmq_data import PzmqData
from .util import get_work_id, get_work_id_num, json_str_get, unit_call


class LocalEvent(enum.IntEnum):
    """Events handled by a unit's event loop."""

    NONE = 0
    SETUP = 1
    EXIT = 2
    PAUSE = 3
    TASKINFO = 4


class StackFlow:
    """A unit serving the ``setup``, ``pause``, ``exit`` and ``taskinfo`` RPC actions.

    Each action is queued and handled on the unit's own event loop thread.
    Subclasses override :meth:`setup`, :meth:`exit`, :meth:`pause` and
    :meth:`taskinfo`; the defaults report that the action is not supported.
    """

    def __init__(self, unit_name: str) -> None:
        self.unit_name = unit_name
        self.request_id = ""
        self.out_zmq_url = ""
        self.llm_task_channel: dict[int, LlmChannel] = {}
        self.status = 0
        self._closed = False
        self._exit_flag = threading.Event()
        self._events: "queue.Queue[tuple[LocalEvent, Optional[PzmqData]]]" = queue.Queue()
        self._listeners: dict[LocalEvent, Callable[[Optional[PzmqData]], None]] = {
            LocalEvent.NONE: self._on_none,
            LocalEvent.PAUSE: self._on_pause,
            LocalEvent.EXIT: self._on_exit,
            LocalEvent.SETUP: self._on_setup,
            LocalEvent.TASKINFO: self._on_taskinfo,
        }
        self._rpc = Pzmq(unit_name)
        for action, event in (
            ("setup", LocalEvent.SETUP),
            ("pause", LocalEvent.PAUSE),
            ("exit", LocalEvent.EXIT),
            ("taskinfo", LocalEvent.TASKINFO),
        ):
            self._rpc.register_rpc_action(action, self._enqueue_handler(event))
        self._thread = threading.Thread(target=self._event_loop, name="event_loop", daemon=True)
        self._thread.start()
        self.status = 1

    def _enqueue_handler(self, event: LocalEvent) -> Callable[[Pzmq, PzmqData], str]:
        def handler(_pzmq: Pzmq, data: PzmqData) -> str:
            self._events.put((event, data))
            return "None"

        return handler

    def _event_loop(self) -> None:
        while not self._exit_flag.is_set():
            batch = [self._events.get()]
            while True:
                try:
                    batch.append(self._events.get_nowait())
                except queue.Empty:
                    break
            for event, arg in batch:
                try:
                    self._listeners[event](arg)
                except Exception as exc:
                    log_error(f"{event.name.lower()} event of {self.unit_name} failed: {exc!r}")

    def _on_none(self, arg: Optional[PzmqData]) -> None:
        pass

    def _take_request(self, zmq_url: str, data: str) -> None:
        self.request_id = json_str_get(data, "request_id")
        self.out_zmq_url = zmq_url

    def _on_setup(self, arg: PzmqData) -> None:
        zmq_url, data = arg.get_param(0), arg.get_param(1)
        self._take_request(zmq_url, data)
        if self.status:
            self._setup_raw(zmq_url, data)

    def _on_exit(self, arg: PzmqData) -> None:
        zmq_url, data = arg.get_param(0), arg.get_param(1)
        self._take_request(zmq_url, data)
        if self.status:
            self._exit_raw(zmq_url, data)

    def _on_pause(self, arg: PzmqData) -> None:
        # The pause request is read from the first parameter, as the address is.
        zmq_url, data = arg.get_param(0), arg.get_param(0)
        self._take_request(zmq_url, data)
        if self.status:
            self._pause_raw(zmq_url, data)

    def _on_taskinfo(self, arg: PzmqData) -> None:
        zmq_url, data = arg.get_param(0), arg.get_param(1)
        self._take_request(zmq_url, data)
        if self.status:
            self._taskinfo_raw(zmq_url, data)

    def _redirect_output(self, work_id: str, zmq_url: str) -> None:
        try:
            self.get_channel(get_work_id_num(work_id)).set_push_url(zmq_url)
        except Exception:
            pass

    def _setup_raw(self, zmq_url: str, raw: str) -> int:
        log_info(f"StackFlow::setup raw zmq_url:{zmq_url} raw:{raw}")
        work_id_num = self.sys_register_unit(self.unit_name)
        work_id = f"{self.unit_name}.{work_id_num}"
        channel = self.get_channel(work_id_num)
        channel.set_push_url(zmq_url)
        channel.request_id = json_str_get(raw, "request_id")
        channel.work_id = work_id
        if self.setup(work_id, json_str_get(raw, "object"), json_str_get(raw, "data")):
            self.sys_release_unit(work_id_num, work_id)
        return 0

    def _exit_raw(self, zmq_url: str, raw: str) -> int:
        log_info("StackFlow::exit raw")
        work_id = json_str_get(raw, "work_id")
        self._redirect_output(work_id, zmq_url)
        if self.exit(work_id, json_str_get(raw, "object"), json_str_get(raw, "data")) == 0:
            return int(self.sys_release_unit(-1, work_id))
        return 0

    def _pause_raw(self, zmq_url: str, raw: str) -> None:
        log_info("StackFlow::pause raw")
        work_id = json_str_get(raw, "work_id")
        self._redirect_output(work_id, zmq_url)
        self.pause(work_id, json_str_get(raw, "object"), json_str_get(raw, "data"))

    def _taskinfo_raw(self, zmq_url: str, raw: str) -> None:
        work_id = json_str_get(raw, "work_id")
        self._redirect_output(work_id, zmq_url)
        self.taskinfo(work_id, json_str_get(raw, "object"), json_str_get(raw, "data"))

    def _unsupported(self, work_id: str) -> None:
        self.send("None", "None", {"code": -18, "message": "not have unit action!"}, work_id)

    def get_channel(self, workid: Union[int, str]) -> Optional[LlmChannel]:
        """Return the channel of a work id given as a number or a string.

        Raises ``KeyError`` for an unknown work id; other key types give ``None``.
        """
        if isinstance(workid, int) and not isinstance(workid, bool):
            number = workid
        elif isinstance(workid, str):
            number = get_work_id_num(workid)
        else:
            return None
        return self.llm_task_channel[number]

    def setup(self, work_id: str, object: str, data: str) -> int:
        """Set up a task; a non-zero result releases the work id again."""
        log_info("StackFlow::setup")
        self._unsupported(work_id)
        return -1

    def exit(self, work_id: str, object: str, data: str) -> int:
        """End a task; a zero result releases the work id."""
        log_info("StackFlow::exit")
        self._unsupported(work_id)
        return 0

    def pause(self, work_id: str, object: str, data: str) -> None:
        """Pause a task."""
        log_info("StackFlow::pause")
        self._unsupported(work_id)

    def taskinfo(self, work_id: str, object: str, data: str) -> None:
        """Report on a task."""
        self._unsupported(work_id)

    def send(
        self,
        object: str,
        data: Any,
        error_msg: Any = LLM_NO_ERROR,
        work_id: str = "",
        zmq_url: str = "",
    ) -> int:
        """Push a response to ``zmq_url``, or to the address of the last request."""
        body = {
            "request_id": self.request_id,
            "work_id": work_id,
            "created": int(time.time()),
            "object": object,
            "data": data,
            "error": error_msg if error_msg else {"code": 0, "message": ""},
        }
        out = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False) + "\n"
        with Pzmq(zmq_url or self.out_zmq_url, Mode.PUSH) as endpoint:
            return endpoint.send_data(out)

    def sys_sql_set(self, key: str, val: str) -> None:
        """Store a value in the system database."""
        body = json.dumps({"key": key, "val": val}, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        unit_call("sys", "sql_set", body)

    def sys_sql_unset(self, key: str) -> None:
        """Remove a value from the system database."""
        unit_call("sys", "sql_unset", key)

    def sys_register_unit(self, unit_name: str) -> int:
        """Obtain a work id number from the system and open its channel."""
        params: dict[str, str] = {}

        def collect(message: PzmqData) -> None:
            ports = message.get_param(1)
            params["out"] = message.get_param(0, ports)
            params["inference"] = message.get_param(1, ports)
            params["number"] = message.get_param(0)

        unit_call("sys", "register_unit", unit_name, collect)
        if "number" not in params:
            raise PzmqError(f"registering {unit_name} failed")
        work_id_num = int(params["number"])
        log_info(
            f"work_id_number:{work_id_num}, out_port:{params['out']}, inference_port:{params['inference']} "
        )
        self.llm_task_channel[work_id_num] = LlmChannel(params["out"], params["inference"], self.unit_name)
        return work_id_num

    def sys_release_unit(self, work_id_num: int, work_id: str = "") -> bool:
        """Return a work id to the system and close its channel."""
        if work_id:
            number = get_work_id_num(work_id)
        else:
            work_id = get_work_id(work_id_num, self.unit_name)
            number = work_id_num
        unit_call("sys", "release_unit", work_id)
        channel = self.llm_task_channel.pop(number, None)
        if channel is not None:
            channel.close()
        log_info(f"release work_id {work_id} success")
        return False

    def close(self) -> None:
        """Stop the event loop, release every work id and stop serving RPC."""
        if self._closed:
            return
        self._closed = True
        self._exit_flag.set()
        self._events.put((LocalEvent.NONE, None))
        if self._thread is not threading.current_thread():
            self._thread.join()
        while self.llm_task_channel:
            self.sys_release_unit(next(iter(self.llm_task_channel)), "")
        self._rpc.close()

    def __enter__(self) -> "StackFlow":
        return self

    def __exit__(self, *args) -> None:
        self.close()