"""Client that follows the drag server and downloads its key frames."""

from __future__ import annotations

import argparse
import os
import socket
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from dragsync.protocol import (
    CLIENT_BLOCK_SIZE,
    CmdCategory,
    CmdHeader,
    DataCategory,
    DataHeader,
    read_block,
    recv_cmd,
    recv_data_header,
    send_cmd,
    send_data_header,
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_CMD_PORT = 9008
DEFAULT_DATA_PORT = 9009
DEFAULT_OUTPUT = "aa.txt"


def _print_position(x: str, y: str) -> None:
    print(f"X: {x} Y: {y}")


class SyncClient:
    """Holds the command and data connections to a drag server."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        cmd_port: int = DEFAULT_CMD_PORT,
        data_port: int = DEFAULT_DATA_PORT,
        output_path: "str | os.PathLike[str]" = DEFAULT_OUTPUT,
    ) -> None:
        self.host = host
        self.cmd_port = cmd_port
        self.data_port = data_port
        self.output_path = output_path
        self.file_id = -1
        self._cmd: Optional[socket.socket] = None
        self._data: Optional[socket.socket] = None
        self._last_cmd: Optional[CmdHeader] = None

    def connect(self) -> None:
        """Open both channels."""
        cmd = socket.create_connection((self.host, self.cmd_port))
        try:
            data = socket.create_connection((self.host, self.data_port))
        except OSError:
            cmd.close()
            raise
        self._cmd, self._data = cmd, data

    def close(self) -> None:
        """Close both channels."""
        for sock in (self._cmd, self._data):
            if sock is not None:
                try:
                    sock.close()
                except OSError:
                    pass
        self._cmd = self._data = None

    def __enter__(self) -> "SyncClient":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _sockets(self) -> Tuple[socket.socket, socket.socket]:
        if self._cmd is None or self._data is None:
            raise RuntimeError("client is not connected")
        return self._cmd, self._data

    def request_key_frame(self) -> None:
        """Ask the server for the current key frame."""
        cmd, _ = self._sockets()
        send_cmd(cmd, CmdHeader(CmdCategory.CURK_INFO))

    def receive_file(self, header: DataHeader) -> Optional[int]:
        """Save the file announced by ``header`` and acknowledge it.

        Returns the number of bytes written, or None when the file belongs
        to a key frame other than the one requested.
        """
        cmd, data = self._sockets()
        if header.file_id != self.file_id:
            return None
        remaining = header.file_size
        with open(self.output_path, "wb") as fh:
            while remaining > 0:
                chunk = read_block(data, min(CLIENT_BLOCK_SIZE, remaining))
                fh.write(chunk)
                remaining -= len(chunk)
        if self._last_cmd is not None:
            ack = replace(self._last_cmd, category=CmdCategory.K_OK)
        else:
            ack = CmdHeader(CmdCategory.K_OK, header.file_id)
        send_cmd(cmd, ack)
        return header.file_size

    def run(self, on_position: Optional[Callable[[str, str], None]] = None) -> int:
        """Follow the server until it disconnects.

        Positions are passed to ``on_position``; key frames are downloaded
        as they are announced.  Returns the number of files received.
        """
        report = on_position or _print_position
        cmd, data = self._sockets()
        self.request_key_frame()
        received = 0
        try:
            while True:
                header = recv_cmd(cmd)
                self._last_cmd = header
                if header.category is CmdCategory.XY:
                    report(header.x, header.y)
                elif header.category is CmdCategory.K_INFO:
                    self.file_id = header.file_id
                    send_data_header(
                        data, DataHeader(header.file_id, DataCategory.ASK, 0)
                    )
                    incoming = recv_data_header(data)
                    if incoming.category is not DataCategory.F_SEND:
                        continue
                    if self.receive_file(incoming) is not None:
                        received += 1
                        print(f"file_id: {header.file_id}")
                        print(f"XY: {header.x},{header.y}")
        except OSError:
            pass
        return received


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dragsync-client", description=__doc__)
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--cmd-port", type=int, default=DEFAULT_CMD_PORT)
    parser.add_argument("--data-port", type=int, default=DEFAULT_DATA_PORT)
    parser.add_argument("--output", default=DEFAULT_OUTPUT)
    args = parser.parse_args(argv)

    client = SyncClient(args.host, args.cmd_port, args.data_port, args.output)
    try:
        client.connect()
    except OSError as exc:
        print(f"cannot connect: {exc}")
        return 1
    with client:
        try:
            client.run()
        except KeyboardInterrupt:
            pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())