"""Wire format and socket helpers for the command and data channels.

Two TCP channels are used.  The command channel carries :class:`CmdHeader`
messages (positions, key-frame announcements and acknowledgements), the data
channel carries :class:`DataHeader` messages followed by raw file blocks.

Encoding (little endian):

* ``CmdHeader``: ``int32 category, int32 file_id, int64 guid,
  uint16 len(x), uint16 len(y)`` followed by ``x`` and ``y`` as UTF-8.
* ``DataHeader``: ``int32 file_id, int32 category, int64 file_size``.
"""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass
from enum import IntEnum
from os import PathLike
from typing import Union

BLOCK_SIZE = 1024
"""Block size used by the server when streaming a file."""

CLIENT_BLOCK_SIZE = 512 * 1024
"""Block size used by the client when reading a file."""

MAX_FIELD_BYTES = 0xFFFF
"""Largest encoded size of a coordinate string."""

_CMD_FIXED = struct.Struct("<iiqHH")
_DATA_FIXED = struct.Struct("<iiq")

CMD_FIXED_SIZE = _CMD_FIXED.size
DATA_HEADER_SIZE = _DATA_FIXED.size


class ProtocolError(ConnectionError):
    """Raised when a peer closes early or sends a malformed message."""


class CmdCategory(IntEnum):
    """Kind of message on the command channel."""

    XY = 0          # ordinary position frame
    CURK_FAIL = 1   # no key frame has been produced yet
    K_INFO = 2      # a key frame is available
    CLR = 3         # clear the channel
    K_OK = 4        # key frame fully received
    SEND_INFO = 5   # key frame is being sent
    CURK_INFO = 6   # request the current key frame


class DataCategory(IntEnum):
    """Kind of message on the data channel."""

    F_SEND = 0  # file follows
    ASK = 1     # request a file


@dataclass
class CmdHeader:
    """A command-channel message."""

    category: CmdCategory = CmdCategory.XY
    file_id: int = -1
    x: str = ""
    y: str = ""
    guid: int = 0

    def to_bytes(self) -> bytes:
        """Encode the header for the wire."""
        x_raw = self.x.encode("utf-8")
        y_raw = self.y.encode("utf-8")
        if len(x_raw) > MAX_FIELD_BYTES or len(y_raw) > MAX_FIELD_BYTES:
            raise ValueError("coordinate field too long")
        try:
            fixed = _CMD_FIXED.pack(
                int(self.category), self.file_id, self.guid, len(x_raw), len(y_raw)
            )
        except struct.error as exc:
            raise ValueError(f"cannot encode command header: {exc}") from exc
        return fixed + x_raw + y_raw


@dataclass
class DataHeader:
    """A data-channel message header."""

    file_id: int = -1
    category: DataCategory = DataCategory.ASK
    file_size: int = 0

    def to_bytes(self) -> bytes:
        """Encode the header for the wire."""
        try:
            return _DATA_FIXED.pack(self.file_id, int(self.category), self.file_size)
        except struct.error as exc:
            raise ValueError(f"cannot encode data header: {exc}") from exc


def _cmd_category(value: int) -> CmdCategory:
    try:
        return CmdCategory(value)
    except ValueError:
        raise ProtocolError(f"unknown command category {value}") from None


def _data_category(value: int) -> DataCategory:
    try:
        return DataCategory(value)
    except ValueError:
        raise ProtocolError(f"unknown data category {value}") from None


def decode_cmd_header(data: bytes) -> CmdHeader:
    """Decode one complete command header from ``data``."""
    data = bytes(data)
    if len(data) < CMD_FIXED_SIZE:
        raise ProtocolError("command header truncated")
    category, file_id, guid, x_len, y_len = _CMD_FIXED.unpack_from(data)
    if len(data) != CMD_FIXED_SIZE + x_len + y_len:
        raise ProtocolError("command header length mismatch")
    body = data[CMD_FIXED_SIZE:]
    try:
        x = body[:x_len].decode("utf-8")
        y = body[x_len:].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolError("coordinate field is not UTF-8") from exc
    return CmdHeader(_cmd_category(category), file_id, x, y, guid)


def decode_data_header(data: bytes) -> DataHeader:
    """Decode one complete data header from ``data``."""
    data = bytes(data)
    if len(data) != DATA_HEADER_SIZE:
        raise ProtocolError("data header has wrong length")
    file_id, category, file_size = _DATA_FIXED.unpack(data)
    return DataHeader(file_id, _data_category(category), file_size)


def read_block(sock: socket.socket, length: int) -> bytes:
    """Read exactly ``length`` bytes, raising if the peer closes first."""
    if length < 0:
        raise ValueError("length must not be negative")
    chunks = bytearray()
    while len(chunks) < length:
        chunk = sock.recv(length - len(chunks))
        if not chunk:
            raise ProtocolError(
                f"connection closed after {len(chunks)} of {length} bytes"
            )
        chunks += chunk
    return bytes(chunks)


def send_block(sock: socket.socket, block: bytes) -> None:
    """Send the whole of ``block``."""
    sock.sendall(block)


def send_cmd(sock: socket.socket, header: CmdHeader) -> None:
    """Send a command header."""
    sock.sendall(header.to_bytes())


def recv_cmd(sock: socket.socket) -> CmdHeader:
    """Receive one command header."""
    fixed = read_block(sock, CMD_FIXED_SIZE)
    *_, x_len, y_len = _CMD_FIXED.unpack(fixed)
    return decode_cmd_header(fixed + read_block(sock, x_len + y_len))


def send_data_header(sock: socket.socket, header: DataHeader) -> None:
    """Send a data header."""
    sock.sendall(header.to_bytes())


def recv_data_header(sock: socket.socket) -> DataHeader:
    """Receive one data header."""
    return decode_data_header(read_block(sock, DATA_HEADER_SIZE))


def send_file(
    sock: socket.socket,
    path: Union[str, "PathLike[str]"],
    size: int,
    block_size: int = BLOCK_SIZE,
) -> int:
    """Stream the first ``size`` bytes of ``path`` in blocks.

    Returns the number of bytes sent, which is smaller than ``size`` only
    when the file ends early.
    """
    if block_size <= 0:
        raise ValueError("block_size must be positive")
    sent = 0
    with open(path, "rb") as fh:
        while sent < size:
            block = fh.read(min(block_size, size - sent))
            if not block:
                break
            send_block(sock, block)
            sent += len(block)
    return sent