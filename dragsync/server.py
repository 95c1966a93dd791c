"""Drag server: a movable square whose position is pushed to every client.

Clients attach to two channels.  Position updates and key-frame notices go
out on the command channel.  The key-frame file is streamed on the data
channel when a client asks for it.
"""

from __future__ import annotations

import argparse
import os
import selectors
import socket
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from dragsync.protocol import (
    BLOCK_SIZE,
    CmdCategory,
    CmdHeader,
    DataCategory,
    DataHeader,
    ProtocolError,
    recv_cmd,
    recv_data_header,
    send_cmd,
    send_data_header,
    send_file,
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_CMD_PORT = 9008
DEFAULT_DATA_PORT = 9009
DEFAULT_DATA_FILE = "Data_file.txt"
KEY_FRAME_ID = 0
RECT_SIZE = 100
_FILL_COLOUR = "#0000e1"


@dataclass
class DragRect:
    """A fixed-size square that follows the pointer while it is held."""

    left: int = 100
    top: int = 100
    size: int = RECT_SIZE
    pressed: bool = False
    anchor: Tuple[int, int] = (0, 0)

    @property
    def right(self) -> int:
        return self.left + self.size

    @property
    def bottom(self) -> int:
        return self.top + self.size

    def contains(self, x: int, y: int) -> bool:
        """Whether the point lies inside the square (right and bottom edges excluded)."""
        return self.left <= x < self.right and self.top <= y < self.bottom

    def press(self, x: int, y: int) -> bool:
        """Record a button press; the square is picked up if it was hit."""
        self.anchor = (x, y)
        if self.contains(x, y):
            self.pressed = True
        return self.pressed

    def move(self, x: int, y: int) -> bool:
        """Move with the pointer while held; return True if the square moved."""
        if not self.pressed:
            return False
        dx = x - self.anchor[0]
        dy = y - self.anchor[1]
        self.anchor = (x, y)
        self.left += dx
        self.top += dy
        return dx != 0 or dy != 0

    def release(self) -> None:
        """Drop the square."""
        self.pressed = False


class SyncServer:
    """Listens on the command and data channels and serves connected clients."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        cmd_port: int = DEFAULT_CMD_PORT,
        data_port: int = DEFAULT_DATA_PORT,
        data_file: "str | os.PathLike[str]" = DEFAULT_DATA_FILE,
    ) -> None:
        self.host = host
        self.cmd_port = cmd_port
        self.data_port = data_port
        self.data_file = data_file
        self.key_ready = False
        self.key_frames: List[CmdHeader] = []
        self._cmd_listener: Optional[socket.socket] = None
        self._data_listener: Optional[socket.socket] = None
        self._cmd_clients: List[socket.socket] = []
        self._data_clients: List[socket.socket] = []
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._streams = 0
        self._stop = threading.Event()
        self._loop_done = threading.Event()
        self._loop_done.set()
        self._wake_r: Optional[socket.socket] = None
        self._wake_w: Optional[socket.socket] = None
        self._closed = False

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """Bind and listen on both channels."""
        if self._cmd_listener is not None:
            return
        self._cmd_listener = socket.create_server(
            (self.host, self.cmd_port), backlog=socket.SOMAXCONN
        )
        try:
            self._data_listener = socket.create_server(
                (self.host, self.data_port), backlog=socket.SOMAXCONN
            )
        except OSError:
            self._cmd_listener.close()
            self._cmd_listener = None
            raise
        self.cmd_port = self._cmd_listener.getsockname()[1]
        self.data_port = self._data_listener.getsockname()[1]
        self._wake_r, self._wake_w = socket.socketpair()
        self._stop.clear()
        self._closed = False

    def close(self) -> None:
        """Stop serving and close every socket."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._wake_w is not None:
            try:
                self._wake_w.send(b"\0")
            except OSError:
                pass
        self._loop_done.wait(2.0)
        with self._lock:
            sockets = [*self._cmd_clients, *self._data_clients]
            self._cmd_clients.clear()
            self._data_clients.clear()
        sockets += [
            s
            for s in (self._cmd_listener, self._data_listener, self._wake_r, self._wake_w)
            if s is not None
        ]
        for sock in sockets:
            try:
                sock.close()
            except OSError:
                pass
        self._cmd_listener = self._data_listener = None
        self._wake_r = self._wake_w = None

    def __enter__(self) -> "SyncServer":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # -- state -----------------------------------------------------------

    @property
    def cmd_clients(self) -> Tuple[socket.socket, ...]:
        with self._lock:
            return tuple(self._cmd_clients)

    @property
    def data_clients(self) -> Tuple[socket.socket, ...]:
        with self._lock:
            return tuple(self._data_clients)

    @property
    def streaming(self) -> bool:
        """True while a file is being streamed to some client."""
        with self._lock:
            return self._streams > 0

    # -- outgoing --------------------------------------------------------

    def _send_cmd(self, sock: socket.socket, header: CmdHeader) -> None:
        with self._send_lock:
            send_cmd(sock, header)

    def _drop(self, sock: socket.socket) -> None:
        with self._lock:
            for clients in (self._cmd_clients, self._data_clients):
                if sock in clients:
                    clients.remove(sock)
        try:
            sock.close()
        except OSError:
            pass

    def _broadcast(self, header: CmdHeader) -> int:
        sent = 0
        for sock in self.cmd_clients:
            try:
                self._send_cmd(sock, header)
                sent += 1
            except OSError:
                self._drop(sock)
        return sent

    def broadcast_position(self, x: int, y: int) -> int:
        """Send the square's position to every command client.

        Nothing is sent while a file is being streamed.  Returns the number
        of clients reached.
        """
        if self.streaming:
            return 0
        return self._broadcast(CmdHeader(CmdCategory.XY, -1, str(x), str(y)))

    def announce_key_frame(self, x: int, y: int) -> Optional[CmdHeader]:
        """Mark a key frame at the given position and tell every client.

        The notice is only sent when a data client is connected and the
        data file exists; it is returned, or None when nothing was sent.
        """
        self.key_ready = True
        if not self.data_clients or not os.path.isfile(self.data_file):
            return None
        header = CmdHeader(CmdCategory.K_INFO, KEY_FRAME_ID, str(x), str(y))
        with self._lock:
            self.key_frames.append(header)
        self._broadcast(header)
        return header

    # -- incoming --------------------------------------------------------

    def handle_cmd(self, sock: socket.socket, header: CmdHeader) -> Optional[CmdHeader]:
        """React to a command from a client; return the reply sent, if any."""
        if header.category is not CmdCategory.CURK_INFO:
            return None
        with self._lock:
            latest = self.key_frames[-1] if self.key_frames else None
        if not self.key_ready or latest is None:
            reply = replace(header, category=CmdCategory.CURK_FAIL)
        else:
            reply = latest
        self._send_cmd(sock, reply)
        return reply

    def handle_data(self, sock: socket.socket, header: DataHeader) -> Optional[int]:
        """Stream the data file to a client.

        Returns the number of bytes sent, or None when there is no file.
        """
        with self._lock:
            self._streams += 1
        try:
            try:
                size = os.path.getsize(self.data_file)
            except OSError:
                return None
            send_data_header(sock, DataHeader(header.file_id, DataCategory.F_SEND, size))
            return send_file(sock, self.data_file, size, BLOCK_SIZE)
        finally:
            with self._lock:
                self._streams -= 1

    # -- event loop ------------------------------------------------------

    def _accept(
        self,
        sel: selectors.BaseSelector,
        listener: socket.socket,
        clients: List[socket.socket],
        on_readable: Callable[[selectors.BaseSelector, socket.socket], None],
    ) -> None:
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        conn.setblocking(True)
        with self._lock:
            clients.append(conn)
        sel.register(conn, selectors.EVENT_READ, on_readable)

    def _forget(self, sel: selectors.BaseSelector, sock: socket.socket) -> None:
        try:
            sel.unregister(sock)
        except (KeyError, ValueError):
            pass
        self._drop(sock)

    def _on_cmd(self, sel: selectors.BaseSelector, sock: socket.socket) -> None:
        try:
            header = recv_cmd(sock)
            self.handle_cmd(sock, header)
        except (ProtocolError, OSError):
            self._forget(sel, sock)

    def _on_data(self, sel: selectors.BaseSelector, sock: socket.socket) -> None:
        try:
            header = recv_data_header(sock)
        except (ProtocolError, OSError):
            self._forget(sel, sock)
            return
        threading.Thread(target=self._stream, args=(sock, header), daemon=True).start()

    def _stream(self, sock: socket.socket, header: DataHeader) -> None:
        try:
            self.handle_data(sock, header)
        except OSError:
            pass

    def serve_forever(self) -> None:
        """Accept clients and answer their requests until :meth:`close`."""
        if self._cmd_listener is None or self._data_listener is None:
            raise RuntimeError("server not started")
        sel = selectors.DefaultSelector()
        sel.register(
            self._cmd_listener,
            selectors.EVENT_READ,
            lambda s, l: self._accept(s, l, self._cmd_clients, self._on_cmd),
        )
        sel.register(
            self._data_listener,
            selectors.EVENT_READ,
            lambda s, l: self._accept(s, l, self._data_clients, self._on_data),
        )
        sel.register(self._wake_r, selectors.EVENT_READ, None)
        self._loop_done.clear()
        try:
            while not self._stop.is_set():
                try:
                    events = sel.select()
                except (OSError, ValueError):
                    if self._stop.is_set():
                        break
                    raise
                for key, _ in events:
                    if key.data is None:
                        continue
                    key.data(sel, key.fileobj)
        finally:
            sel.close()
            self._loop_done.set()


def run_window(server: SyncServer) -> None:
    """Show the draggable square and drive the server from its events."""
    import tkinter as tk

    rect = DragRect()
    root = tk.Tk()
    root.title("App")
    canvas = tk.Canvas(root, width=640, height=480, bg="white")
    canvas.pack(fill="both", expand=True)
    item = canvas.create_rectangle(rect.left, rect.top, rect.right, rect.bottom)

    def redraw() -> None:
        canvas.coords(item, rect.left, rect.top, rect.right, rect.bottom)
        canvas.itemconfigure(item, fill=_FILL_COLOUR if rect.pressed else "")

    def on_press(event) -> None:
        rect.press(event.x, event.y)
        redraw()

    def on_motion(event) -> None:
        if rect.move(event.x, event.y):
            server.broadcast_position(rect.left, rect.top)
        redraw()

    def on_release(event) -> None:
        rect.release()
        redraw()

    def on_right(event) -> None:
        server.announce_key_frame(rect.left, rect.top)

    canvas.bind("<ButtonPress-1>", on_press)
    canvas.bind("<Motion>", on_motion)
    canvas.bind("<ButtonRelease-1>", on_release)
    canvas.bind("<ButtonPress-3>", on_right)

    threading.Thread(target=server.serve_forever, daemon=True).start()
    try:
        root.mainloop()
    finally:
        server.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dragsync-server", description=__doc__)
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--cmd-port", type=int, default=DEFAULT_CMD_PORT)
    parser.add_argument("--data-port", type=int, default=DEFAULT_DATA_PORT)
    parser.add_argument("--data-file", default=DEFAULT_DATA_FILE)
    parser.add_argument(
        "--headless", action="store_true", help="serve without opening a window"
    )
    args = parser.parse_args(argv)

    server = SyncServer(args.host, args.cmd_port, args.data_port, args.data_file)
    try:
        server.start()
    except OSError as exc:
        print(f"cannot listen: {exc}")
        return 1
    with server:
        if args.headless:
            try:
                server.serve_forever()
            except KeyboardInterrupt:
                pass
        else:
            run_window(server)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())