# dragsync

dragsync is a server and a client that keep in step over two TCP
connections:

- a **command channel** (port 9008 by default) that carries the position of
  a square the user drags around in the server's window, key-frame
  announcements and acknowledgements;
- a **data channel** (port 9009 by default) that carries the key-frame file
  from the server to a client that asks for it.

## Installation

```
pip install .
```

Python 3.10 or newer is needed. The package uses only the standard library;
the server's window needs `tkinter`.

## Running the server

```
dragsync-server [--host HOST] [--cmd-port PORT] [--data-port PORT]
                [--data-file PATH] [--headless]
```

The server listens on both ports (on `127.0.0.1` by default) and opens a
window with a 100×100 square:

- press the left button inside the square and move the pointer to drag it;
  every move sends the square's new top-left corner to each client on the
  command channel (no positions are sent while a file is being streamed);
- press the right button to mark a key frame. If a data client is connected
  and the data file (`Data_file.txt` by default) exists, every client is
  told that a key frame is ready, together with the square's position.

When a client asks for the current key frame, it gets the latest
announcement, or a "no key frame yet" reply if there is none. When a client
sends a request on the data channel, the server answers with a header giving
the file's size and then streams the data file in 1024-byte blocks, each
transfer in its own thread.

`--headless` serves clients without opening a window; in that mode no
positions or key frames are produced.

## Running the client

```
dragsync-client [--host HOST] [--cmd-port PORT] [--data-port PORT]
                [--output PATH]
```

The client connects to both channels, asks for the current key frame and
then follows the server until it disconnects:

- each position is printed as `X: <x> Y: <y>`;
- each key-frame announcement makes it request the file on the data channel,
  save it to the output path (`aa.txt` by default, overwritten each time),
  print `file_id: <id>` and `XY: <x>,<y>`, and acknowledge the key frame on
  the command channel.

## Using it from Python

```python
from dragsync.client import SyncClient

with SyncClient("127.0.0.1", 9008, 9009, "key_frame.bin") as client:
    files = client.run(lambda x, y: print(f"X: {x} Y: {y}"))
```

`SyncClient.run()` sends the key-frame request itself and returns the number
of files received. `request_key_frame()` and `receive_file()` are available
for driving the exchange step by step.

```python
from dragsync.server import SyncServer

with SyncServer("127.0.0.1", 9008, 9009, "Data_file.txt") as server:
    server.serve_forever()
```

Passing port `0` lets the system choose free ports; `cmd_port` and
`data_port` hold the real ones after `start()` (which the `with` block
calls). From another thread, `broadcast_position(x, y)` sends a position to
every command client and `announce_key_frame(x, y)` marks and announces a
key frame. `close()` stops `serve_forever()` and closes every socket.
`dragsync.server.DragRect` holds the square's drag logic on its own
(`press`, `move`, `release`, `contains`), and `run_window(server)` opens the
window around a started server.

`dragsync.protocol` holds the wire format: `CmdHeader` and `DataHeader`
with their `to_bytes()` methods, `decode_cmd_header` / `decode_data_header`,
the `CmdCategory` and `DataCategory` enums, and the socket helpers
`send_cmd`, `recv_cmd`, `send_data_header`, `recv_data_header`,
`send_block`, `read_block` and `send_file`. A connection that closes in the
middle of a message, or a malformed message, raises `ProtocolError`.

## Limitations

- Every key frame carries file id 0, and the server always streams the same
  data file; there is no history of earlier key frames to fetch.
- The `CLR` and `SEND_INFO` command categories are part of the wire format,
  but neither side sends or acts on them.
- There is no authentication or encryption on either channel.

## Tests

```
pip install .[test]
pytest
```