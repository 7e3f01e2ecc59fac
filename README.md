# stackflow

A small framework for building cooperating "units" that talk over ZeroMQ.
A unit serves the RPC actions `setup`, `pause`, `exit` and `taskinfo`. It
asks a unit named `sys` for work ids and ports. It exchanges JSON messages
through publish/subscribe and push/pull channels.

## Install

```
pip install .
```

## Modules

- `stackflow.pzmq`: `Pzmq` is one ZeroMQ endpoint. Its role is chosen by
  `Mode`:
  - `PUB` and `PULL` bind.
  - `SUB` and `PUSH` connect.
  - `RPC_FUN` serves actions.
  - `RPC_CALL` calls actions.

  Construct `Pzmq(name)` without a mode to get an RPC endpoint. It listens
  on, or connects to, `ipc:///tmp/rpc.<name>`. If the name already contains
  `://`, it is used as the address unchanged.

  The RPC methods are:
  - `register_rpc_action` starts the server when the first action is
    registered. It also adds a built-in `list_action` action, which answers
    with `{"actions":[...]}`.
  - `call_rpc_action` sends one request and returns the reply as a
    `PzmqData`. The reply is empty if the server does not answer within
    `timeout` milliseconds (3000 by default). The connection is closed
    afterwards.
  - Unknown actions are answered with `NotAction`.

  `send_data` returns the number of bytes sent. Failures raise
  `PzmqError`. `Pzmq` is a context manager, and `close` removes the socket
  file of a bound `ipc` endpoint.
- `stackflow.pzmq_data`: `PzmqData` holds a received message.
  - `string()` returns the message as text.
  - `len()` gives its size.
  - `get_param(index, idata)` reads the two-part framing that
    `set_param(param0, param1)` builds: one length byte, the first part,
    then the second part. The first part may be at most 255 bytes.
- `stackflow.util`: helper functions.
  - `json_str_get` reads the raw value of a key from JSON text without
    parsing it.
  - `get_work_id`, `get_work_id_num` and `get_work_id_name` build and take
    apart ids of the form `unit.N`. A missing number gives `WORK_ID_NONE`.
  - `decode_stream(data, stream_buff)` collects streamed chunks. It returns
    the assembled text after the final chunk, and `None` before that.
  - `unit_call(unit_name, unit_action, data, callback)` returns the reply
    text, or `""` when the unit cannot be reached.
  - `unicode_to_utf8` and `file_exists` are also here.
- `stackflow.channel`: `LlmChannel` holds one work id's endpoints:
  - a publisher;
  - a push connection to the user (`set_push_url`, `clear_push_url`);
  - input subscriptions (`subscriber_work_id`, `subscriber`,
    `stop_subscriber`).

  `send` publishes a JSON response. It also pushes the response to the user
  when `enoutput` is set. `send_raw_for_url` pushes a single message to any
  address.
- `stackflow.stackflow`: `StackFlow` is the base class of a unit.
  - Each incoming action is queued and handled on the unit's own event-loop
    thread.
  - `setup` first registers a work id with `sys` and opens its
    `LlmChannel`. It then calls your `setup(work_id, object, data)`. A
    non-zero result releases the work id again.
  - After `exit` returns 0, the work id is released.
  - The default `setup`, `exit`, `pause` and `taskinfo` reply with error
    code -18 ("not have unit action!").
  - `send` pushes a response to the address of the last request.
  - `sys_sql_set` and `sys_sql_unset` forward to `sys`.
  - `close` (or leaving a `with` block) stops the loop, releases every work
    id and stops serving RPC.
- `stackflow.log`: coloured console logging. It provides `log_error`,
  `log_warn`, `log_notice`, `log_info` and `log_debug`. Set the level with
  `set_log_level(LogLevel.DEBUG)` and read it back with `get_log_level()`.

## Example

A unit that echoes its input back:

```python
from stackflow.stackflow import StackFlow


class Echo(StackFlow):
    def setup(self, work_id, object, data):
        channel = self.get_channel(work_id)
        channel.subscriber_work_id("", lambda obj, payload: channel.send(obj, payload, ""))
        self.send("None", "None", "", work_id)
        return 0


with Echo("echo") as unit:
    ...  # serve until done
```

Pushing a message to an address:

```python
from stackflow.pzmq import Mode, Pzmq

with Pzmq("ipc:///tmp/llm/out", Mode.PUSH) as push:
    push.send_data('{"object": "None"}\n')
```

Calling an action on a running unit:

```python
from stackflow.util import unit_call

print(unit_call("echo", "list_action", ""))
```

## What it does not do

This package provides only the building blocks for units. It does not
include:

- the `sys` unit that hands out work ids and ports, and stores `sql_set`
  values;
- a way to read those values back;
- any command-line program.

Setting up a task needs a `sys` unit to be running. Without one, the
registration fails: the error is logged and the task is not started.

## Tests

```
pip install .[test]
pytest
```