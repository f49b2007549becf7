import io
import os
import sys
import time
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

# Add project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from ssh_mcp_server.config import AppConfig, ConnectionConfig  # noqa: E402
from ssh_mcp_server.errors import SSHConnectionError  # noqa: E402
from ssh_mcp_server.executor import CommandExecutor  # noqa: E402
from ssh_mcp_server.registry import ConnectionRegistry  # noqa: E402


class FakeChannel:
    """模拟 paramiko.Channel 的非阻塞接口"""

    def __init__(
        self,
        stdout: bytes = b"",
        stderr: bytes = b"",
        exit_code: int = 0,
        delay: float = 0.0,
        drop: bool = False,
    ):
        self._stdout = [stdout] if stdout else []
        self._stderr = [stderr] if stderr else []
        self.exit_code = exit_code
        self.ready_at = time.monotonic() + delay
        self.drop = drop
        self._closed = False
        self.close_calls = 0

    def _due(self) -> bool:
        return time.monotonic() >= self.ready_at

    @property
    def closed(self) -> bool:
        return self._closed or (self.drop and self._due())

    def recv_ready(self) -> bool:
        return bool(self._stdout) and self._due()

    def recv(self, nbytes: int) -> bytes:
        return self._stdout.pop(0)

    def recv_stderr_ready(self) -> bool:
        return bool(self._stderr) and self._due()

    def recv_stderr(self, nbytes: int) -> bytes:
        return self._stderr.pop(0)

    def exit_status_ready(self) -> bool:
        # 与 paramiko 一致：通道关闭后也视为就绪
        return self.closed or (not self.drop and self._due())

    def recv_exit_status(self) -> int:
        if self.drop:
            return -1
        return self.exit_code

    def close(self) -> None:
        self._closed = True
        self.close_calls += 1


class FakeRemoteFile(io.BytesIO):
    def __init__(self, store: Dict[str, bytes], path: str, mode: str, fail_after: Optional[int] = None):
        super().__init__(store.get(path, b"") if "r" in mode else b"")
        self._store = store
        self._path = path
        self._mode = mode
        self._fail_after = fail_after

    def set_pipelined(self, pipelined: bool = True) -> None:
        self.pipelined = pipelined

    def write(self, data) -> int:
        if self._fail_after is not None and self.tell() + len(data) > self._fail_after:
            raise OSError("remote write failed")
        return super().write(data)

    def close(self) -> None:
        if not self.closed and "w" in self._mode:
            self._store[self._path] = self.getvalue()
        super().close()


class FakeSFTP:
    def __init__(self, host: "FakeHost"):
        self.host = host
        self.closed = False

    def open(self, path: str, mode: str = "r"):
        if "r" in mode and path not in self.host.files:
            raise FileNotFoundError(2, "No such file", path)
        return FakeRemoteFile(self.host.files, path, mode, self.host.write_fail_after)

    def close(self) -> None:
        self.closed = True


class FakeHost:
    """一台模拟的远程主机"""

    def __init__(self, name: str):
        self.name = name
        self.files: Dict[str, bytes] = {}
        self.responses: Dict[str, dict] = {}
        self.fail_open: Optional[Exception] = None
        self.write_fail_after: Optional[int] = None
        self.connect_kwargs: List[dict] = []
        self.sessions: List["FakeSession"] = []
        self.channels: List[FakeChannel] = []
        self.sftp_clients: List[FakeSFTP] = []
        self.commands: List[str] = []

    def channel_for(self, command: str) -> FakeChannel:
        spec = self.responses.get(command, {"stdout": f"{command}\n".encode()})
        channel = FakeChannel(**spec)
        self.channels.append(channel)
        return channel

    @property
    def live_sessions(self) -> List["FakeSession"]:
        return [s for s in self.sessions if s.active]


class FakeSession:
    """模拟 SSHSession"""

    def __init__(self, config: ConnectionConfig, host: FakeHost):
        self.config = config
        self.host = host
        self.active = False
        self.close_calls = 0

    def open(self, connect_kwargs: dict) -> None:
        self.host.connect_kwargs.append(connect_kwargs)
        if self.host.fail_open is not None:
            raise self.host.fail_open
        self.active = True
        self.host.sessions.append(self)

    def is_active(self) -> bool:
        return self.active

    def open_command_channel(self, command: str) -> FakeChannel:
        if not self.active:
            raise SSHConnectionError("session is not active", retryable=True)
        self.host.commands.append(command)
        return self.host.channel_for(command)

    def open_sftp(self) -> FakeSFTP:
        if not self.active:
            raise SSHConnectionError("session is not active", retryable=True)
        sftp = FakeSFTP(self.host)
        self.host.sftp_clients.append(sftp)
        return sftp

    def close(self) -> None:
        self.active = False
        self.close_calls += 1

    def drop(self) -> None:
        """模拟网络断开"""
        self.active = False


class FakeNetwork:
    def __init__(self):
        self.hosts: Dict[str, FakeHost] = {}

    def host(self, name: str) -> FakeHost:
        if name not in self.hosts:
            self.hosts[name] = FakeHost(name)
        return self.hosts[name]

    def session_factory(self, config: ConnectionConfig) -> FakeSession:
        return FakeSession(config, self.host(config.name))


def make_connection(name: str, **overrides) -> ConnectionConfig:
    values = dict(name=name, host=f"{name}.example.com", username="deploy", password="secret")
    values.update(overrides)
    return ConnectionConfig(**values)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def app_config():
    config = AppConfig(
        monitor_interval=0.01,
        reconnect_max_attempts=3,
        reconnect_base_delay=0.01,
        default_timeout=5,
    )
    config.add_connection(make_connection("a"))
    config.add_connection(make_connection("b"))
    config.add_connection(make_connection("db", command_whitelist=("^ls", "^df")))
    return config


def build_registry(app_config: AppConfig, network: FakeNetwork) -> ConnectionRegistry:
    return ConnectionRegistry(
        app_config,
        session_factory=network.session_factory,
        executor=CommandExecutor(poll_interval=0.005),
    )


@pytest_asyncio.fixture
async def registry(app_config, network, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    registry = build_registry(app_config, network)
    yield registry
    await registry.shutdown()
