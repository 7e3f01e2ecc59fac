"""ZeroMQ endpoint supporting publish/subscribe, push/pull and request/reply RPC."""

from __future__ import annotations

import enum
import json
import os
import threading
from typing import Callable, Optional, Union

import zmq

from .log import log_error
from .pzmq_data import PzmqData

RPC_URL_HEAD = "ipc:///tmp/rpc."
DEFAULT_TIMEOUT_MS = 3000
_SCHEME_LENGTH = 6
_POLL_INTERVAL_MS = 100

RpcCallback = Callable[["Pzmq", PzmqData], Union[str, bytes]]
MsgCallback = Callable[["Pzmq", PzmqData], None]


class Mode(enum.IntEnum):
    """Endpoint roles; the low six bits are the socket type."""

    PUB = 1
    SUB = 2
    PULL = 7
    PUSH = 8
    RPC_FUN = 4 | 0x80
    RPC_CALL = 3 | 0x80

    @property
    def socket_type(self) -> int:
        return self.value & 0x3F


class PzmqError(RuntimeError):
    """Raised when an endpoint cannot be opened or used."""


def _to_bytes(value: Union[str, bytes, bytearray, memoryview]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    return bytes(value)


class Pzmq:
    """One ZeroMQ endpoint.

    Without a mode the endpoint is an RPC endpoint named by ``url``, created
    lazily when an action is registered (server) or called (client).
    """

    def __init__(self, url: str, mode: Optional[int] = None, callback: Optional[MsgCallback] = None) -> None:
        self._lock = threading.Lock()
        self._actions: dict[str, RpcCallback] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._context: Optional[zmq.Context] = None
        self._socket: Optional[zmq.Socket] = None
        self.timeout = DEFAULT_TIMEOUT_MS
        self.url = ""
        self.rpc_url_head = RPC_URL_HEAD
        self.mode: Optional[Mode] = None
        self.rpc_server = ""

        if mode is None or Mode(mode) is Mode.RPC_FUN:
            self.rpc_server = url
            if "://" in url:
                self.rpc_url_head = ""
            if mode is not None:
                self.mode = Mode.RPC_FUN
            return

        self.mode = Mode(mode)
        if not url.startswith("ipc://"):
            self.rpc_url_head = ""
        self._create(url, callback)

    def is_bind(self) -> bool:
        """Whether this endpoint binds rather than connects."""
        return self.mode in (Mode.PUB, Mode.PULL, Mode.RPC_FUN)

    def list_actions(self) -> str:
        """Return the registered action names as a JSON document."""
        with self._lock:
            names = list(self._actions)
        return json.dumps({"actions": names}, separators=(",", ":"), ensure_ascii=False)

    def register_rpc_action(self, action: str, callback: RpcCallback) -> None:
        """Register an RPC action, starting the server on the first one."""
        with self._lock:
            if action in self._actions:
                self._actions[action] = callback
                return
            if not self._actions:
                self.mode = Mode.RPC_FUN
                self._create(self.rpc_url_head + self.rpc_server)
                self._actions["list_action"] = lambda _pzmq, _data: self.list_actions()
            self._actions[action] = callback

    def unregister_rpc_action(self, action: str) -> None:
        """Remove an RPC action if it is registered."""
        with self._lock:
            self._actions.pop(action, None)

    def call_rpc_action(self, action: str, data: Union[str, bytes], callback: Optional[MsgCallback] = None) -> PzmqData:
        """Call an action on the RPC server and return its reply.

        The reply is empty when the server does not answer in time. The
        connection is closed afterwards.
        """
        if self._socket is not None and self.mode is not Mode.RPC_CALL:
            raise PzmqError("endpoint is not an RPC client")
        reply = PzmqData()
        try:
            if self._socket is None:
                if not self.rpc_server:
                    raise PzmqError("no RPC server to call")
                self.mode = Mode.RPC_CALL
                self._create(self.rpc_url_head + self.rpc_server)
            try:
                self._socket.send(_to_bytes(action), zmq.SNDMORE)
                self._socket.send(_to_bytes(data))
                reply = PzmqData(self._socket.recv())
            except zmq.ZMQError:
                pass
            if callback is not None:
                callback(self, reply)
        finally:
            self.close()
        return reply

    def send_data(self, raw: Union[str, bytes]) -> int:
        """Send one message and return the number of bytes sent."""
        if self._socket is None:
            raise PzmqError("endpoint is not open")
        payload = _to_bytes(raw)
        try:
            self._socket.send(payload)
        except zmq.ZMQError as exc:
            raise PzmqError(f"send to {self.url} failed: {exc}") from exc
        return len(payload)

    def close(self) -> None:
        """Stop the receive loop, close the socket and remove a bound socket file."""
        if self._socket is None:
            return
        self._stop.set()
        if self._thread is not None:
            if self._thread is not threading.current_thread():
                self._thread.join()
            self._thread = None
        linger = self.timeout if self.mode in (Mode.PUB, Mode.PUSH) else 0
        self._socket.close(linger=linger)
        self._context.term()
        if self.is_bind() and self.rpc_url_head:
            try:
                os.remove(self.url[_SCHEME_LENGTH:])
            except FileNotFoundError:
                pass
        self._socket = None
        self._context = None

    def __enter__(self) -> "Pzmq":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _create(self, url: str, callback: Optional[MsgCallback] = None) -> None:
        self.url = url
        if self.mode is Mode.RPC_CALL and self.rpc_url_head:
            if not os.path.exists(url[_SCHEME_LENGTH:]):
                raise PzmqError(f"RPC server socket {url} does not exist")
        self._stop.clear()
        self._context = zmq.Context()
        self._socket = self._context.socket(self.mode.socket_type)
        sock = self._socket
        try:
            if self.mode in (Mode.PUB, Mode.PULL, Mode.RPC_FUN):
                sock.bind(url)
            elif self.mode is Mode.SUB:
                sock.setsockopt(zmq.RECONNECT_IVL, 100)
                sock.setsockopt(zmq.RECONNECT_IVL_MAX, 1000)
                sock.connect(url)
                sock.setsockopt(zmq.SUBSCRIBE, b"")
            elif self.mode is Mode.PUSH:
                sock.setsockopt(zmq.RECONNECT_IVL, 100)
                sock.setsockopt(zmq.RECONNECT_IVL_MAX, 1000)
                sock.setsockopt(zmq.SNDTIMEO, self.timeout)
                sock.connect(url)
            elif self.mode is Mode.RPC_CALL:
                sock.setsockopt(zmq.SNDTIMEO, self.timeout)
                sock.setsockopt(zmq.RCVTIMEO, self.timeout)
                sock.connect(url)
        except zmq.ZMQError as exc:
            sock.close(linger=0)
            self._context.term()
            self._socket = None
            self._context = None
            raise PzmqError(f"cannot open {url}: {exc}") from exc
        if self.mode in (Mode.SUB, Mode.PULL, Mode.RPC_FUN):
            self._thread = threading.Thread(
                target=self._event_loop, args=(callback,), name="zmq_event_loop", daemon=True
            )
            self._thread.start()

    def _event_loop(self, callback: Optional[MsgCallback]) -> None:
        sock = self._socket
        poller = zmq.Poller()
        poller.register(sock, zmq.POLLIN)
        while not self._stop.is_set():
            try:
                if not poller.poll(_POLL_INTERVAL_MS):
                    continue
                if self.mode is Mode.RPC_FUN:
                    self._serve_request(sock)
                    continue
                payload = sock.recv()
            except zmq.ZMQError as exc:
                if self._stop.is_set():
                    break
                log_error(f"receive on {self.url} failed: {exc}")
                continue
            if not payload or callback is None:
                continue
            try:
                callback(self, PzmqData(payload))
            except Exception as exc:
                log_error(f"message callback on {self.url} failed: {exc!r}")

    def _serve_request(self, sock: zmq.Socket) -> None:
        frames = sock.recv_multipart()
        action = frames[0].decode("utf-8", "surrogateescape")
        request = PzmqData(frames[1] if len(frames) > 1 else b"")
        with self._lock:
            handler = self._actions.get(action)
        reply: Union[str, bytes] = "NotAction"
        if handler is not None:
            try:
                reply = handler(self, request)
            except Exception:
                reply = "NotAction"
        sock.send(_to_bytes(reply))