"""Control socket: a bi-directional JSON event stream between daemon and CLI."""

from __future__ import annotations

import argparse
import codecs
import json
import os
import queue
import socket
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

DEFAULT_CONTROL = "/var/run/nextdns.sock"

_ACCEPT_POLL = 0.2


@dataclass
class Event:
    """An event received from or sent to a peer."""

    name: str
    data: Any = None
    reply: bool = False

    def to_bytes(self) -> bytes:
        """Encode as one line of JSON; empty if the data cannot be encoded."""
        try:
            text = json.dumps(
                {"name": self.name, "data": self.data, "reply": self.reply},
                separators=(",", ":"),
            )
        except (TypeError, ValueError):
            return b""
        return text.encode() + b"\n"

    @classmethod
    def from_dict(cls, data) -> "Event":
        """Build an event from decoded JSON, matching keys case-insensitively."""
        if not isinstance(data, dict):
            raise ValueError(f"cannot decode event from {type(data).__name__}")
        fields = {}
        for key, value in data.items():
            lower = key.lower()
            if lower in ("name", "data", "reply"):
                fields[lower] = value
        name = fields.get("name") or ""
        reply = fields.get("reply") or False
        if not isinstance(name, str):
            raise ValueError("event name must be a string")
        if not isinstance(reply, bool):
            raise ValueError("event reply must be a boolean")
        return cls(name=name, data=fields.get("data"), reply=reply)


def _iter_json(sock: socket.socket) -> Iterator[Any]:
    """Yield consecutive JSON values read from ``sock`` until EOF."""
    decoder = json.JSONDecoder()
    text_decoder = codecs.getincrementaldecoder("utf-8")()
    buf = ""
    while True:
        buf = buf.lstrip()
        if buf:
            try:
                value, end = decoder.raw_decode(buf)
            except json.JSONDecodeError:
                pass
            else:
                buf = buf[end:]
                yield value
                continue
        chunk = sock.recv(4096)
        if not chunk:
            if buf.strip():
                raise ValueError("unexpected end of JSON input")
            return
        buf += text_decoder.decode(chunk)


class Client:
    """A connection to a control server."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._lock = threading.Lock()
        self._replies: "queue.Queue[Optional[Event]]" = queue.Queue()
        self._waiting = threading.Event()
        threading.Thread(target=self._read_loop, daemon=True).start()

    def _read_loop(self) -> None:
        try:
            for value in _iter_json(self._sock):
                event = Event.from_dict(value)
                if event.reply and self._waiting.is_set():
                    self._replies.put(event)
        except (OSError, ValueError):
            pass
        finally:
            self._replies.put(None)
            self._sock.close()

    def send(self, event: Event) -> Any:
        """Send ``event`` and return the data of the matching reply."""
        with self._lock:
            self._waiting.set()
            try:
                self._sock.sendall(event.to_bytes())
                while True:
                    reply = self._replies.get()
                    if reply is None:
                        self._replies.put(None)
                        raise ConnectionError("control connection closed")
                    if reply.name == event.name:
                        return reply.data
            finally:
                self._waiting.clear()

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def dial(addr: str) -> Client:
    """Connect to the control socket at ``addr``."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(addr)
    except OSError:
        sock.close()
        raise
    return Client(sock)


class Server:
    """Serves commands and broadcasts events to clients of a Unix socket."""

    def __init__(
        self,
        addr: str,
        on_connect: Optional[Callable[[socket.socket], None]] = None,
        on_disconnect: Optional[Callable[[socket.socket], None]] = None,
        on_event: Optional[Callable[[socket.socket, Event], None]] = None,
        error_log: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.addr = addr
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_event = on_event
        self.error_log = error_log
        self._lock = threading.Lock()
        self._commands: dict[str, Callable[[Any], Any]] = {}
        self._clients: list[socket.socket] = []
        self._listener: Optional[socket.socket] = None
        self._stopped = threading.Event()

    def start(self) -> None:
        """Start listening; clients are served in background threads."""
        try:
            os.remove(self.addr)
        except FileNotFoundError:
            pass
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(self.addr)
            listener.listen()
        except OSError:
            listener.close()
            raise
        listener.settimeout(_ACCEPT_POLL)
        self._stopped.clear()
        self._listener = listener
        threading.Thread(target=self._run, args=(listener,), daemon=True).start()

    def command(self, name: str, handler: Callable[[Any], Any]) -> None:
        """Register ``handler`` to answer events called ``name``."""
        with self._lock:
            self._commands[name] = handler

    def broadcast(self, event: Event) -> None:
        """Send ``event`` to every connected client."""
        payload = event.to_bytes()
        with self._lock:
            for conn in self._clients:
                try:
                    conn.sendall(payload)
                except OSError as exc:
                    self._log_err(OSError(f"write event: {exc}"))

    def stop(self) -> None:
        """Stop listening and remove the socket file."""
        with self._lock:
            self._clients = []
            listener, self._listener = self._listener, None
        self._stopped.set()
        if listener is not None:
            listener.close()
            try:
                os.remove(self.addr)
            except FileNotFoundError:
                pass

    def _run(self, listener: socket.socket) -> None:
        while not self._stopped.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stopped.is_set() or listener.fileno() == -1:
                    return
                self._log_err(exc)
                continue
            conn.settimeout(None)
            threading.Thread(target=self._handle_events, args=(conn,), daemon=True).start()

    def _handle_events(self, conn: socket.socket) -> None:
        if self.on_connect is not None:
            self.on_connect(conn)
        with self._lock:
            self._clients.append(conn)
        try:
            for value in _iter_json(conn):
                event = Event.from_dict(value)
                if self.on_event is not None:
                    self.on_event(conn, event)
                self._handle(conn, event)
        except ValueError as exc:
            self._log_err(ValueError(f"decode event: {exc}"))
        except OSError as exc:
            self._log_err(OSError(f"decode event: {exc}"))
        finally:
            with self._lock:
                self._clients = [c for c in self._clients if c is not conn]
            conn.close()
            if self.on_disconnect is not None:
                self.on_disconnect(conn)

    def _handle(self, conn: socket.socket, event: Event) -> None:
        with self._lock:
            handler = self._commands.get(event.name)
        data = handler(event.data) if handler is not None else None
        reply = Event(name=event.name, data=data, reply=True)
        with self._lock:
            try:
                conn.sendall(reply.to_bytes())
            except OSError as exc:
                self._log_err(exc)

    def _log_err(self, err: Exception) -> None:
        if self.error_log is not None:
            self.error_log(err)


def main(argv=None) -> int:
    """Send a command to the running daemon and print its answer."""
    args = sys.argv[1:] if argv is None else list(argv)
    parser = argparse.ArgumentParser(prog=f"nextdns {args[0]}" if args else "nextdns")
    parser.add_argument("command")
    parser.add_argument(
        "-control", "--control", default=DEFAULT_CONTROL,
        help="Address to the control socket",
    )
    opts = parser.parse_args(args)
    try:
        with dial(opts.control) as client:
            data = client.send(Event(name=opts.command))
    except OSError as exc:
        print(exc, file=sys.stderr)
        return 1
    if isinstance(data, str):
        print(data)
    else:
        print(json.dumps(data, indent=4, sort_keys=True))
    return 0