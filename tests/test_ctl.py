import json
import os
import socket
import tempfile
import threading

import pytest

from nextdnskit.ctl import Event, Server, dial, main


@pytest.fixture
def sock_path():
    with tempfile.TemporaryDirectory(prefix="ndk") as directory:
        yield os.path.join(directory, "c.sock")


@pytest.fixture
def server(sock_path):
    srv = Server(addr=sock_path)
    srv.start()
    yield srv
    srv.stop()


def _read_line(conn):
    data = b""
    while not data.endswith(b"\n"):
        chunk = conn.recv(4096)
        if not chunk:
            break
        data += chunk
    return data


def test_event_wire_format():
    assert Event(name="status").to_bytes() == b'{"name":"status","data":null,"reply":false}\n'


def test_event_round_trip():
    event = Event(name="log", data={"a": [1, 2]}, reply=True)
    decoded = Event.from_dict(json.loads(event.to_bytes()))
    assert decoded == event


def test_event_from_dict_case_insensitive_and_defaults():
    assert Event.from_dict({"Name": "x", "REPLY": True}) == Event(name="x", data=None, reply=True)
    assert Event.from_dict({}) == Event(name="")


def test_event_from_dict_invalid():
    with pytest.raises(ValueError):
        Event.from_dict({"name": 3})
    with pytest.raises(ValueError):
        Event.from_dict([1, 2])


def test_send_returns_handler_result(server, sock_path):
    server.command("status", lambda data: "running")
    server.command("info", lambda data: {"echo": data})
    with dial(sock_path) as client:
        assert client.send(Event(name="status")) == "running"
        assert client.send(Event(name="info", data=[1])) == {"echo": [1]}


def test_unknown_command_replies_null(server, sock_path):
    with dial(sock_path) as client:
        assert client.send(Event(name="nothing")) is None


def test_on_event_receives_events(server, sock_path):
    received = []
    done = threading.Event()

    def on_event(conn, event):
        received.append(event)
        done.set()

    server.on_event = on_event
    with dial(sock_path) as client:
        client.send(Event(name="ping", data="x"))
    assert done.wait(5)
    assert received == [Event(name="ping", data="x")]


def test_broadcast_reaches_connected_clients(server, sock_path):
    conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    conn.settimeout(5)
    conn.connect(sock_path)
    try:
        conn.sendall(Event(name="hello").to_bytes())
        reply = json.loads(_read_line(conn))
        assert reply == {"name": "hello", "data": None, "reply": True}
        server.broadcast(Event(name="log", data="line"))
        assert Event.from_dict(json.loads(_read_line(conn))) == Event(name="log", data="line")
    finally:
        conn.close()


def test_invalid_json_is_logged_and_server_keeps_serving(server, sock_path):
    errors = []
    done = threading.Event()

    def log(err):
        errors.append(err)
        done.set()

    server.error_log = log
    server.command("status", lambda data: "ok")
    conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    conn.connect(sock_path)
    conn.sendall(b"[1, 2]\n")
    assert done.wait(5)
    conn.close()
    assert len(errors) >= 1
    assert "decode event" in str(errors[0])
    with dial(sock_path) as client:
        assert client.send(Event(name="status")) == "ok"


def test_stop_removes_socket(sock_path):
    srv = Server(addr=sock_path)
    srv.start()
    srv.command("status", lambda data: "up")
    with dial(sock_path) as client:
        assert client.send(Event(name="status")) == "up"
    srv.stop()
    assert os.path.exists(sock_path) is False
    with pytest.raises(OSError):
        dial(sock_path)


def test_dial_missing_socket(sock_path):
    with pytest.raises(OSError):
        dial(sock_path)


def test_main_prints_string(server, sock_path, capsys):
    server.command("status", lambda data: "running")
    assert main(["status", "-control", sock_path]) == 0
    assert capsys.readouterr().out == "running\n"


def test_main_prints_indented_json(server, sock_path, capsys):
    payload = {"b": 1, "a": [True]}
    server.command("info", lambda data: payload)
    assert main(["info", "-control", sock_path]) == 0
    out = capsys.readouterr().out
    assert json.loads(out) == payload
    assert out == json.dumps(payload, indent=4, sort_keys=True) + "\n"


def test_main_reports_connection_error(sock_path, capsys):
    assert main(["status", "-control", sock_path]) == 1
    assert capsys.readouterr().err