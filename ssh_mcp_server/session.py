"""
SSH 会话封装

基于 paramiko 的安全会话：认证建立连接、打开命令通道和 SFTP 通道。
这里的方法都是阻塞调用，由连接注册表放到线程池中执行。
"""

import logging
import socket
import threading
from typing import Any, Callable, Dict, Optional
from urllib.parse import unquote, urlparse

import paramiko
import socks

from .config import ConnectionConfig
from .errors import AuthError, SSHConnectionError

logger = logging.getLogger(__name__)


def open_proxy_socket(config: ConnectionConfig, timeout: Optional[float]) -> socket.socket:
    """通过 SOCKS 代理连接到目标主机"""
    parsed = urlparse(config.socks_proxy)
    scheme = parsed.scheme.lower()
    proxy_type = socks.SOCKS4 if scheme.startswith("socks4") else socks.SOCKS5

    sock = socks.socksocket()
    sock.set_proxy(
        proxy_type,
        parsed.hostname,
        parsed.port or 1080,
        rdns=scheme in ("socks5h", "socks4a"),
        username=unquote(parsed.username) if parsed.username else None,
        password=unquote(parsed.password) if parsed.password else None,
    )
    sock.settimeout(timeout)
    try:
        sock.connect((config.host, config.port))
    except (OSError, socks.ProxyError):
        sock.close()
        raise
    logger.info(f"已通过 SOCKS 代理 {parsed.hostname}:{parsed.port or 1080} 连接到 {config.host}:{config.port}")
    return sock


class SSHSession:
    """一个已认证的 SSH 连接，可复用多个通道"""

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        keepalive_interval: int = 60,
    ):
        self.config = config
        self._client_factory = client_factory
        self.keepalive_interval = keepalive_interval
        self.client: Optional[paramiko.SSHClient] = None
        self._lock = threading.Lock()

    def open(self, connect_kwargs: Dict[str, Any]) -> None:
        """建立 SSH 连接"""
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        target = f"{self.config.username}@{self.config.host}:{self.config.port}"

        try:
            if self.config.socks_proxy:
                connect_kwargs = dict(
                    connect_kwargs,
                    sock=open_proxy_socket(self.config, connect_kwargs.get("timeout")),
                )
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthError(f"Authentication failed for {target}: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            client.close()
            raise SSHConnectionError(f"SSH connection failed: {target}: {e}") from e

        transport = client.get_transport()
        if transport is not None and self.keepalive_interval:
            transport.set_keepalive(self.keepalive_interval)

        with self._lock:
            self.client = client
        logger.info(f"SSH 连接建立成功: {target}")

    def is_active(self) -> bool:
        client = self.client
        if client is None:
            return False
        transport = client.get_transport()
        return transport is not None and transport.is_active()

    def _transport(self) -> paramiko.Transport:
        client = self.client
        transport = client.get_transport() if client is not None else None
        if transport is None or not transport.is_active():
            raise SSHConnectionError(
                f"SSH session to {self.config.host} is not active", retryable=True
            )
        return transport

    def open_command_channel(self, command: str) -> paramiko.Channel:
        """打开命令通道并开始执行命令"""
        transport = self._transport()
        try:
            channel = transport.open_session()
            channel.exec_command(command)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SSHConnectionError(
                f"Failed to open command channel on {self.config.name}: {e}",
                retryable=not self.is_active(),
            ) from e
        return channel

    def open_sftp(self) -> paramiko.SFTPClient:
        """打开 SFTP 通道"""
        transport = self._transport()
        try:
            sftp = paramiko.SFTPClient.from_transport(transport)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise SSHConnectionError(
                f"SFTP connection failed on {self.config.name}: {e}",
                retryable=not self.is_active(),
            ) from e
        if sftp is None:
            raise SSHConnectionError(
                f"SFTP connection failed on {self.config.name}: channel refused",
                retryable=not self.is_active(),
            )
        return sftp

    def close(self) -> None:
        """断开 SSH 连接"""
        with self._lock:
            client, self.client = self.client, None
        if client is not None:
            client.close()
            logger.info(
                f"SSH 连接已断开: {self.config.username}@{self.config.host}"
            )
