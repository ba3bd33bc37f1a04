"""실행 진입점(main.py) 테스트. 실제 서버/브라우저는 띄우지 않는다."""

import socket

import pytest

import main
from config import DEFAULT_PORT, EXAM_STORE_URL
from proctored_cbt.services.exam_store import HttpExamStore, InMemoryExamStore


class TestParseArgs:

    def test_defaults_come_from_config(self) -> None:
        args = main.parse_args([])
        assert args.port == DEFAULT_PORT
        assert args.store_url == EXAM_STORE_URL
        assert args.serve is False
        assert args.kiosk is False

    def test_overrides(self) -> None:
        args = main.parse_args(["--port", "0", "--store-url", "http://store.test", "--serve", "--kiosk"])
        assert args.port == 0
        assert args.store_url == "http://store.test"
        assert args.serve and args.kiosk


class TestResolvePort:

    def test_free_requested_port_is_kept(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            free = s.getsockname()[1]
        assert main.resolve_port("127.0.0.1", free) == free

    def test_busy_port_is_replaced(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            s.listen()
            busy = s.getsockname()[1]
            port = main.resolve_port("127.0.0.1", busy)
        assert port != busy
        assert port > 0

    def test_zero_picks_any_port(self) -> None:
        assert main.resolve_port("127.0.0.1", 0) > 0


class TestBuildServer:

    def test_in_memory_store_by_default(self) -> None:
        server = main.build_server("127.0.0.1", 8123, "")
        assert server.config.port == 8123
        assert isinstance(server.config.app.state.store, InMemoryExamStore)

    def test_remote_store_url(self) -> None:
        server = main.build_server("127.0.0.1", 8123, "http://store.test")
        assert isinstance(server.config.app.state.store, HttpExamStore)


class TestExamWindowCommand:

    def test_app_mode_flags(self, monkeypatch) -> None:
        monkeypatch.setattr(main.os.path, "exists", lambda path: True)
        command = main.exam_window_command("http://127.0.0.1:8000", kiosk=True)
        assert "--app=http://127.0.0.1:8000" in command
        assert "--kiosk" in command

    def test_no_browser_found(self, monkeypatch) -> None:
        monkeypatch.setattr(main.os.path, "exists", lambda path: False)
        assert main.exam_window_command("http://127.0.0.1:8000") is None


@pytest.mark.parametrize("kiosk", [False, True])
def test_kiosk_flag_only_when_requested(monkeypatch, kiosk) -> None:
    monkeypatch.setattr(main.os.path, "exists", lambda path: True)
    command = main.exam_window_command("http://x", kiosk=kiosk)
    assert ("--kiosk" in command) is kiosk
