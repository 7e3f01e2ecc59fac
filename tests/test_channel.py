import json
import queue
import tempfile

import pytest

from stackflow.channel import LlmChannel, send_raw_for_url
from stackflow.pzmq import Mode, Pzmq, PzmqError
from stackflow.pzmq_data import PzmqData


@pytest.fixture
def url():
    with tempfile.TemporaryDirectory(prefix="sf") as d:
        yield lambda name: f"ipc://{d}/{name}"


def _wait_for(q, send, tries=50):
    for _ in range(tries):
        send()
        try:
            return q.get(timeout=0.1)
        except queue.Empty:
            continue
    raise AssertionError("nothing received")


def test_send_pushes_to_user(url):
    q = queue.Queue()
    with Pzmq(url("out"), Mode.PULL, lambda _p, d: q.put(d.string())):
        with LlmChannel(url("pub"), url("inf"), "llm") as channel:
            channel.request_id = "r1"
            channel.work_id = "llm.1"
            channel.enoutput = True
            channel.set_push_url(url("out"))
            sent = channel.send("llm.utf-8", "hello", "")
            msg = q.get(timeout=5)
    assert msg.endswith("\n")
    assert sent == len(msg.encode())
    body = json.loads(msg)
    assert list(body) == sorted(body)
    assert body["request_id"] == "r1"
    assert body["work_id"] == "llm.1"
    assert body["object"] == "llm.utf-8"
    assert body["data"] == "hello"
    assert body["error"] == {"code": 0, "message": ""}
    assert isinstance(body["created"], int)


def test_send_with_error_and_explicit_work_id(url):
    q = queue.Queue()
    error = {"code": -6, "message": "Unit Does Not Exist"}
    with Pzmq(url("out"), Mode.PULL, lambda _p, d: q.put(d.string())):
        with LlmChannel(url("pub"), url("inf"), "llm") as channel:
            channel.enoutput = True
            channel.set_push_url(url("out"))
            channel.send("None", "None", error, "llm.2")
            body = json.loads(q.get(timeout=5))
    assert body["error"] == error
    assert body["work_id"] == "llm.2"


def test_send_without_output_returns_zero(url):
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        assert channel.send("None", "None", "") == 0


def test_send_raw_to_usr_without_output_url(url):
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        with pytest.raises(PzmqError):
            channel.send_raw_to_usr("x")


def test_clear_push_url(url):
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        channel.set_push_url(url("out"))
        assert channel.output_url == url("out")
        channel.clear_push_url()
        with pytest.raises(PzmqError):
            channel.send_raw_to_usr("x")


def test_publisher_reaches_subscribers(url):
    q = queue.Queue()
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        with Pzmq(url("pub"), Mode.SUB, lambda _p, d: q.put(d.string())):
            got = _wait_for(q, lambda: channel.send_raw_to_pub("ping"))
    assert got == "ping"


def test_subscriber_event_call_updates_state(url):
    calls = []
    raw = PzmqData(
        '{"action":"inference","request_id":"r9","work_id":"llm.1",'
        '"object":"llm.utf-8","data":"hello","zmq_com":"' + url("usr") + '"}'
    )
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        channel.subscriber_event_call(lambda o, d: calls.append((o, d)), None, raw)
        assert calls == [("llm.utf-8", "hello")]
        assert channel.request_id == "r9"
        assert channel.work_id == "llm.1"
        assert channel.output_url == url("usr")


def test_subscriber_event_call_without_action_keeps_state(url):
    calls = []
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        channel.request_id = "old"
        channel.subscriber_event_call(
            lambda o, d: calls.append((o, d)), None, PzmqData('{"request_id":"new","object":"o","data":"d"}')
        )
        assert calls == [("o", "d")]
        assert channel.request_id == "old"


def test_subscriber_work_id_listens_on_inference_url(url):
    q = queue.Queue()
    message = json.dumps({"object": "llm.utf-8", "data": "hi"})
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        channel.subscriber_work_id("", lambda o, d: q.put((o, d)))
        with Pzmq(url("inf"), Mode.PUB) as pub:
            got = _wait_for(q, lambda: pub.send_data(message))
            assert got == ("llm.utf-8", "hi")
            channel.stop_subscriber_work_id("")
            while not q.empty():
                q.get_nowait()
            for _ in range(5):
                pub.send_data(message)
            assert q.empty()


def test_subscriber_work_id_unknown_unit(url):
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        with pytest.raises(LookupError):
            channel.subscriber_work_id("asr.3", lambda o, d: None)


def test_subscriber_and_stop_subscriber(url):
    q = queue.Queue()
    with LlmChannel(url("pub"), url("inf"), "llm") as channel:
        channel.subscriber(url("ext"), lambda _p, d: q.put(d.string()))
        with Pzmq(url("ext"), Mode.PUB) as pub:
            assert _wait_for(q, lambda: pub.send_data("data")) == "data"
            channel.stop_subscriber(url("ext"))
            while not q.empty():
                q.get_nowait()
            for _ in range(5):
                pub.send_data("data")
            assert q.empty()
        assert channel.send_raw_to_pub("still") == len("still")


def test_send_raw_for_url(url):
    q = queue.Queue()
    with Pzmq(url("sink"), Mode.PULL, lambda _p, d: q.put(d.string())):
        assert send_raw_for_url(url("sink"), "payload") == len("payload")
        assert q.get(timeout=5) == "payload"