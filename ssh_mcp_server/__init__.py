"""
SSH MCP Server - 多连接 SSH 命令网关

管理多个命名 SSH 连接的生命周期，在命令到达远程 shell 之前执行安全策略检查，
意外断开时自动重连，并安全地进行文件上传和下载。
"""

from .config import AppConfig, ConnectionConfig
from .registry import ConnectionRegistry
from .server import create_server

__version__ = "0.1.0"
__all__ = ["AppConfig", "ConnectionConfig", "ConnectionRegistry", "create_server"]
