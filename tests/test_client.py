import socket
import threading
import time

import pytest

from dragsync.client import SyncClient, main
from dragsync.protocol import (
    CLIENT_BLOCK_SIZE,
    CmdCategory,
    CmdHeader,
    DataCategory,
    DataHeader,
    recv_cmd,
    recv_data_header,
    send_cmd,
    send_data_header,
)
from dragsync.server import SyncServer


@pytest.fixture
def listeners():
    cmd = socket.create_server(("127.0.0.1", 0))
    data = socket.create_server(("127.0.0.1", 0))
    cmd.settimeout(5)
    data.settimeout(5)
    yield cmd, data
    cmd.close()
    data.close()


@pytest.fixture
def connected(listeners, tmp_path):
    cmd_l, data_l = listeners
    client = SyncClient(
        "127.0.0.1",
        cmd_l.getsockname()[1],
        data_l.getsockname()[1],
        tmp_path / "out.bin",
    )
    client.connect()
    cmd_srv, _ = cmd_l.accept()
    data_srv, _ = data_l.accept()
    cmd_srv.settimeout(5)
    data_srv.settimeout(5)
    yield client, cmd_srv, data_srv
    client.close()
    cmd_srv.close()
    data_srv.close()


def test_request_key_frame_sends_curk_info(connected):
    client, cmd_srv, _ = connected
    client.request_key_frame()
    assert recv_cmd(cmd_srv).category is CmdCategory.CURK_INFO


def test_receive_file_writes_and_acknowledges(connected):
    client, cmd_srv, data_srv = connected
    payload = bytes(range(251)) * ((CLIENT_BLOCK_SIZE // 251) + 3)
    client.file_id = 3
    sender = threading.Thread(target=data_srv.sendall, args=(payload,))
    sender.start()
    written = client.receive_file(DataHeader(3, DataCategory.F_SEND, len(payload)))
    sender.join(5)
    assert written == len(payload)
    with open(client.output_path, "rb") as fh:
        assert fh.read() == payload
    ack = recv_cmd(cmd_srv)
    assert (ack.category, ack.file_id) == (CmdCategory.K_OK, 3)


def test_receive_file_ignores_other_ids(connected, tmp_path):
    client, _, _ = connected
    client.file_id = 1
    assert client.receive_file(DataHeader(2, DataCategory.F_SEND, 10)) is None
    assert not (tmp_path / "out.bin").exists()


def test_methods_need_connection(tmp_path):
    client = SyncClient(output_path=tmp_path / "out.bin")
    with pytest.raises(RuntimeError):
        client.request_key_frame()
    with pytest.raises(RuntimeError):
        client.run(lambda x, y: None)


def test_run_against_scripted_server(connected):
    client, cmd_srv, data_srv = connected
    payload = b"frame" * 40
    seen = {}

    def script():
        seen["request"] = recv_cmd(cmd_srv)
        send_cmd(cmd_srv, CmdHeader(CmdCategory.XY, -1, "1", "2"))
        send_cmd(cmd_srv, CmdHeader(CmdCategory.K_INFO, 4, "3", "4"))
        seen["ask"] = recv_data_header(data_srv)
        send_data_header(data_srv, DataHeader(4, DataCategory.F_SEND, len(payload)))
        data_srv.sendall(payload)
        seen["ack"] = recv_cmd(cmd_srv)
        cmd_srv.shutdown(socket.SHUT_RDWR)

    server = threading.Thread(target=script)
    server.start()
    positions = []
    count = client.run(lambda x, y: positions.append((x, y)))
    server.join(5)

    assert count == 1
    assert positions == [("1", "2")]
    assert seen["request"].category is CmdCategory.CURK_INFO
    assert seen["ask"] == DataHeader(4, DataCategory.ASK, 0)
    assert seen["ack"] == CmdHeader(CmdCategory.K_OK, 4, "3", "4")
    with open(client.output_path, "rb") as fh:
        assert fh.read() == payload


def test_client_downloads_from_server(tmp_path):
    payload = b"0123456789" * 300
    data_file = tmp_path / "frame.bin"
    data_file.write_bytes(payload)
    output = tmp_path / "copy.bin"

    with SyncServer("127.0.0.1", 0, 0, data_file) as server:
        loop = threading.Thread(target=server.serve_forever, daemon=True)
        loop.start()
        client = SyncClient("127.0.0.1", server.cmd_port, server.data_port, output)
        client.connect()
        result = {}
        runner = threading.Thread(
            target=lambda: result.update(count=client.run(lambda x, y: None))
        )
        runner.start()

        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not (
            server.cmd_clients and server.data_clients
        ):
            time.sleep(0.01)
        assert server.announce_key_frame(30, 40) is not None

        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not (
            output.exists() and output.read_bytes() == payload
        ):
            time.sleep(0.01)
        assert output.read_bytes() == payload
    runner.join(5)
    client.close()
    assert result["count"] == 1


def test_main_reports_refused_connection():
    probe = socket.create_server(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    assert main(["--cmd-port", str(port), "--data-port", str(port)]) == 1