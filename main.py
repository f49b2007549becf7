"""
SSH MCP 服务器入口点

启动 MCP 服务器，通过 stdio 提供 SSH 命令执行和文件传输工具。
"""

from ssh_mcp_server.cli import main


if __name__ == "__main__":
    main()
