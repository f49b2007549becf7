"""
MCP SSH 服务器

通过 MCP 协议把连接注册表的操作暴露为工具。
工具失败时返回 isError 结果，不会导致进程退出。
"""

import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from .config import AppConfig
from .errors import GatewayError
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "ssh-mcp-server"


def _tool_error(action: str, error: GatewayError) -> ToolError:
    logger.error(f"{action}: {error.kind}: {error.message}")
    return ToolError(f"{error.kind}: {error.message}")


class GatewayTools:
    """MCP 工具实现"""

    def __init__(self, registry: ConnectionRegistry, default_timeout: Optional[float] = None):
        self.registry = registry
        self.default_timeout = default_timeout

    async def ssh_connect(self, connection: Optional[str] = None) -> str:
        try:
            config = self.registry.get_config(connection)
            await self.registry.connect(config.name)
        except GatewayError as e:
            raise _tool_error("SSH 连接失败", e) from e
        return f"SSH connection ready: {config.name} ({config.username}@{config.host}:{config.port})"

    async def ssh_execute(
        self,
        command: str,
        connection: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        if timeout is None:
            timeout = self.default_timeout
        try:
            return await self.registry.execute_command(command, connection, timeout)
        except GatewayError as e:
            raise _tool_error("命令执行失败", e) from e

    async def ssh_upload(
        self, local_path: str, remote_path: str, connection: Optional[str] = None
    ) -> str:
        try:
            result = await self.registry.upload(local_path, remote_path, connection)
        except GatewayError as e:
            raise _tool_error("文件上传失败", e) from e
        return result.message

    async def ssh_download(
        self, remote_path: str, local_path: str, connection: Optional[str] = None
    ) -> str:
        try:
            result = await self.registry.download(remote_path, local_path, connection)
        except GatewayError as e:
            raise _tool_error("文件下载失败", e) from e
        return result.message

    async def ssh_list_connections(self) -> str:
        connections = self.registry.list_connections()
        if not connections:
            return "No SSH connections configured"
        lines = ["SSH connections:"]
        for info in connections:
            status = "connected" if info.connected else "disconnected"
            lines.append(f"- {info.name}: {info.username}@{info.host}:{info.port} ({status})")
        return "\n".join(lines)

    async def ssh_disconnect(
        self, connection: Optional[str] = None, all_connections: bool = False
    ) -> str:
        try:
            names = await self.registry.disconnect(connection, all_connections=all_connections)
        except GatewayError as e:
            raise _tool_error("断开连接失败", e) from e
        if not names:
            return "No SSH connections to disconnect"
        return f"SSH connection closed: {', '.join(names)}"


def create_server(registry: ConnectionRegistry, config: Optional[AppConfig] = None) -> FastMCP:
    """创建 MCP 服务器并注册工具"""
    config = config or registry.config
    tools = GatewayTools(registry, default_timeout=config.default_timeout)
    mcp = FastMCP(name=SERVER_NAME, log_level=config.log_level.upper())

    @mcp.tool()
    async def ssh_connect(connection: Optional[str] = None) -> str:
        """Connect to a configured SSH server (default connection when omitted)"""
        return await tools.ssh_connect(connection)

    @mcp.tool()
    async def ssh_execute(
        command: str, connection: Optional[str] = None, timeout: Optional[float] = None
    ) -> str:
        """Execute a command on the connected server and return its standard output.

        Commands containing ';', '&' or '|' are rejected. timeout is in seconds and
        only limits how long to wait; the remote command is not killed.
        """
        return await tools.ssh_execute(command, connection, timeout)

    @mcp.tool()
    async def ssh_upload(
        local_path: str, remote_path: str, connection: Optional[str] = None
    ) -> str:
        """Upload a local file (inside the working directory) to the server"""
        return await tools.ssh_upload(local_path, remote_path, connection)

    @mcp.tool()
    async def ssh_download(
        remote_path: str, local_path: str, connection: Optional[str] = None
    ) -> str:
        """Download a file from the server to a local path inside the working directory"""
        return await tools.ssh_download(remote_path, local_path, connection)

    @mcp.tool()
    async def ssh_list_connections() -> str:
        """List configured SSH connections and their status"""
        return await tools.ssh_list_connections()

    @mcp.tool()
    async def ssh_disconnect(
        connection: Optional[str] = None, all_connections: bool = False
    ) -> str:
        """Disconnect one SSH connection, or all of them with all_connections=true"""
        return await tools.ssh_disconnect(connection, all_connections)

    return mcp
