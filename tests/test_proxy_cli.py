import io
import json
import socket
import threading

import pytest
from rich.console import Console

from hostrelay import proxy
from hostrelay.model.Core.header import RelayConfig
from hostrelay.model.RelayProxyServer import RelayProxyServer


def parse(*argv):
    return proxy.build_parser().parse_args(list(argv))


def test_defaults_without_flags():
    assert proxy.resolve_config(parse()) == RelayConfig()


def test_flags_override_config_file(tmp_path):
    path = tmp_path / "relay.json"
    path.write_text(json.dumps({"listening_port": 9000, "chunk_size": 2048, "log_level": "WARNING"}))

    config = proxy.resolve_config(parse("-c", str(path), "-p", "9100", "--connect-timeout", "4"))

    assert config.listening_port == 9100
    assert config.chunk_size == 2048
    assert config.connect_timeout == 4.0
    assert config.log_level == "WARNING"


def test_invalid_config_exits_with_usage_error(tmp_path, capsys):
    path = tmp_path / "relay.json"
    path.write_text(json.dumps({"colour": "blue"}))

    assert proxy.main(["-c", str(path)]) == 2
    assert "unknown config keys: colour" in capsys.readouterr().err


def test_config_that_is_not_utf8_exits_with_usage_error(tmp_path, capsys):
    path = tmp_path / "relay.json"
    path.write_bytes(b'{"log_level": "\xff"}')

    assert proxy.main(["-c", str(path)]) == 2
    assert "not UTF-8" in capsys.readouterr().err


def test_bind_failure_exits_nonzero(monkeypatch):
    monkeypatch.setattr(proxy, "setup_logging", lambda config: None)
    with socket.socket() as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen(1)
        port = taken.getsockname()[1]
        assert proxy.main(["-p", str(port)]) == 1


@pytest.fixture
def running_proxy():
    server = RelayProxyServer(RelayConfig(listening_port=0))
    server.bind()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.stop()
    thread.join(timeout=5)


def test_check_prints_relayed_status(running_proxy, canned_upstream):
    upstream = canned_upstream(b"HTTP/1.1 204 No Content\r\nX-Upstream: canned\r\nContent-Length: 0\r\n\r\n")
    out = io.StringIO()
    config = RelayConfig(listening_port=running_proxy.server_address[1])

    status = proxy.run_check(config, f"http://127.0.0.1:{upstream.address[1]}/", Console(file=out, width=120))

    assert status == 0
    assert "204 No Content" in out.getvalue()
    assert "X-Upstream" in out.getvalue()


def test_check_reports_failure_when_proxy_is_down():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
    out = io.StringIO()

    status = proxy.run_check(RelayConfig(listening_port=port), "http://example.com/", Console(file=out))

    assert status == 1
    assert "failed" in out.getvalue()
