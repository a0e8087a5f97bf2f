"""Tests for the HTTP listener and exit-code translation."""
from __future__ import annotations

import os
import signal
import socket
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

import api.server as server_module
from api.server import (
    READ_HEADER_TIMEOUT,
    GracefulServer,
    HeaderTimeoutH11Protocol,
    build_server_config,
    run_server,
)

SRC_DIR = Path(__file__).parent.parent / "src"
SHORT_HEADER_TIMEOUT = 0.3

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires POSIX signals")


async def _app(scope, receive, send):  # pragma: no cover - never served in these tests
    pass


async def _echo_app(scope, receive, send):
    body = b""
    more_body = True
    while more_body:
        message = await receive()
        body += message.get("body", b"")
        more_body = message.get("more_body", False)
    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [(b"content-length", str(len(body)).encode()), (b"connection", b"close")],
        }
    )
    await send({"type": "http.response.body", "body": body})


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _read_until_closed(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _wait_for_port(port: int, proc: subprocess.Popen, timeout: float = 15.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            output, _ = proc.communicate()
            pytest.fail(f"server exited early with {proc.returncode}:\n{output}")
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.2):
                return
        except OSError:
            time.sleep(0.05)
    pytest.fail(f"server did not listen on :{port}")


class FakeServer:
    """Replaces GracefulServer; behaviour is chosen per test."""

    instances: list = []

    def __init__(self, config) -> None:
        self.config = config
        self.started = False
        self.behaviour = FakeServer.behaviour
        FakeServer.instances.append(self)

    def run(self) -> None:
        if self.behaviour == "clean":
            self.started = True
        elif self.behaviour == "bind-failure":
            raise SystemExit(1)
        elif self.behaviour == "crash":
            self.started = True
            raise RuntimeError("listener crashed")
        elif self.behaviour == "never-started":
            pass


@pytest.fixture
def fake_server(monkeypatch):
    FakeServer.instances = []
    FakeServer.behaviour = "clean"
    monkeypatch.setattr(server_module, "GracefulServer", FakeServer)
    return FakeServer


@pytest.fixture
def live_server(monkeypatch):
    """Real listener on a background thread with a short header deadline."""
    monkeypatch.setattr(HeaderTimeoutH11Protocol, "read_header_timeout", SHORT_HEADER_TIMEOUT)
    port = _free_port()
    server = GracefulServer(build_server_config(_echo_app, port))
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    deadline = time.monotonic() + 5
    while not server.started:
        if time.monotonic() > deadline or not thread.is_alive():
            pytest.fail("listener did not start")
        time.sleep(0.01)

    yield port

    server.should_exit = True
    thread.join(timeout=5)


def test_clean_shutdown_exits_zero(fake_server, logger):
    assert run_server(_app, "8080", logger) == 0


def test_binds_all_interfaces_on_port(fake_server, logger, caplog):
    caplog.set_level("INFO")

    run_server(_app, "8080", logger)

    config = fake_server.instances[0].config
    assert config.host == "0.0.0.0"
    assert config.port == 8080
    assert "starting server on :8080" in caplog.text


@pytest.mark.parametrize("behaviour", ["bind-failure", "crash", "never-started"])
def test_listener_failures_exit_one(fake_server, logger, behaviour, caplog):
    fake_server.behaviour = behaviour

    assert run_server(_app, "8080", logger) == 1
    assert "error from listener" in caplog.text


@pytest.mark.parametrize("port", ["http", "-1", "70000"])
def test_invalid_port_exits_one_without_binding(fake_server, logger, port):
    assert run_server(_app, port, logger) == 1
    assert fake_server.instances == []


def test_server_config_uses_header_timeout_protocol():
    config = build_server_config(_app, 9000, shutdown_timeout=3)

    assert config.http is HeaderTimeoutH11Protocol
    assert config.lifespan == "off"
    assert config.timeout_graceful_shutdown == 3
    assert HeaderTimeoutH11Protocol.read_header_timeout == READ_HEADER_TIMEOUT == 5.0


class TestHeaderTimeout:
    def test_incomplete_request_head_is_dropped(self, live_server):
        with socket.create_connection(("127.0.0.1", live_server), timeout=5) as sock:
            started = time.monotonic()
            sock.sendall(b"GET /jobs HTTP/1.1\r\nHost: riverui\r\n")

            assert sock.recv(1024) == b""
            elapsed = time.monotonic() - started

        assert SHORT_HEADER_TIMEOUT / 2 <= elapsed < 3

    def test_request_head_in_time_keeps_connection_open(self, live_server):
        with socket.create_connection(("127.0.0.1", live_server), timeout=5) as sock:
            sock.sendall(b"POST /jobs HTTP/1.1\r\nHost: riverui\r\nContent-Length: 5\r\n\r\n")
            # A slow body is not subject to the header deadline
            time.sleep(SHORT_HEADER_TIMEOUT * 3)
            sock.sendall(b"hello")

            response = _read_until_closed(sock)

        assert response.startswith(b"HTTP/1.1 200")
        assert response.endswith(b"hello")


class TestShutdownSignals:
    @posix_only
    def test_captured_signal_is_not_reraised(self):
        server = GracefulServer(build_server_config(_app, 9000))
        previous = signal.getsignal(signal.SIGTERM)

        with server.capture_signals():
            signal.raise_signal(signal.SIGTERM)

        assert server.should_exit is True
        assert signal.getsignal(signal.SIGTERM) is previous

    @posix_only
    @pytest.mark.parametrize("sig", [signal.SIGTERM, signal.SIGINT])
    def test_signal_stops_cli_cleanly_and_releases_pool(self, tmp_path, sig):
        port = _free_port()
        env = {
            **os.environ,
            "DATABASE_URL": f"sqlite:///{tmp_path / 'river.db'}",
            "PORT": str(port),
            "RIVER_DEBUG": "1",
            "PYTHONPATH": os.pathsep.join(filter(None, [str(SRC_DIR), os.environ.get("PYTHONPATH")])),
        }
        proc = subprocess.Popen(
            [sys.executable, "-m", "cli"],
            cwd=tmp_path,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        try:
            _wait_for_port(port, proc)
            proc.send_signal(sig)
            output, _ = proc.communicate(timeout=20)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.communicate()

        assert proc.returncode == 0, output
        assert "server stopped" in output
        assert "Database pool closed" in output
