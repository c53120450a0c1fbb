from __future__ import annotations

import asyncio
import json
import socket

import aiohttp
import pytest

from core.auth_manager import AuthManager
from core.config_manager import ConfigManager
from core.server_manager import ServerManager, build_components
from core.tunnel import ForwardingTunnel, NullTunnel


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("INTERSTELLAR_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("PORT", raising=False)


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _config(tmp_path, **overrides) -> ConfigManager:
    static = tmp_path / "static"
    static.mkdir(exist_ok=True)
    (static / "index.html").write_text("<h1>home</h1>")
    (static / "404.html").write_text("missing")

    data = {
        "server": {"host": "127.0.0.1", "port": _free_port()},
        "pages": {"static_dir": str(static)},
    }
    data.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    return ConfigManager(path)


def test_build_components_from_defaults(tmp_path):
    components = build_components(_config(tmp_path))

    assert isinstance(components.tunnel, NullTunnel)
    assert components.auth is None
    assert components.cache.ttl_seconds == 30 * 24 * 60 * 60
    assert components.resolver.resolve("/e/1/a.js") == "https://raw.githubusercontent.com/qrs/x/fixy/a.js"
    assert components.mirror.cache is components.cache


def test_build_components_with_auth_and_tunnel(tmp_path):
    config = _config(
        tmp_path,
        auth={"challenge": True, "users": {"admin": "pw"}},
        tunnel={"backend_url": "http://127.0.0.1:9999", "prefix": "/bare/"},
        cache={"ttl_seconds": 120},
    )
    components = build_components(config)

    assert isinstance(components.auth, AuthManager)
    assert isinstance(components.tunnel, ForwardingTunnel)
    assert components.tunnel.prefix == "/bare/"
    assert components.cache.ttl_seconds == 120


def test_auth_without_users_is_a_config_error(tmp_path):
    config = _config(tmp_path, auth={"challenge": True, "users": {}})
    server = ServerManager(config)

    assert server.start() is False
    assert server.last_error_type == "config"


def test_start_serve_and_stop(tmp_path):
    config = _config(tmp_path)
    server = ServerManager(config)

    assert server.start() is True
    try:
        async def fetch():
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{server.port}/") as resp:
                    return resp.status, await resp.text()

        status, body = asyncio.run(fetch())
        assert status == 200
        assert body == "<h1>home</h1>"

        state = server.get_status()
        assert state["running"] is True
        assert state["dispatcher"]["app_requests"] == 1
        assert "cache" in state
    finally:
        server.stop()

    assert server.is_running is False
    assert server.get_status()["running"] is False


def test_busy_port_fails_start(tmp_path):
    config = _config(tmp_path)

    with socket.socket() as blocker:
        blocker.bind(("127.0.0.1", config.get("server.port")))
        blocker.listen()

        server = ServerManager(config)
        assert server.start() is False

    assert server.last_error_type == "port"
    assert str(config.get("server.port")) in server.last_error_details
