"""
MCP SSH 客户端示例

以子进程方式启动 ssh-mcp-server，通过 stdio 调用工具。

用法:
    python examples/stdio_client.py --ssh name=dev,host=10.0.0.2,user=root,password=pwd
"""

import asyncio
import sys

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


async def main(server_args):
    params = StdioServerParameters(
        command=sys.executable,
        args=["-m", "ssh_mcp_server", "--no-pre-connect", *server_args],
    )

    async with stdio_client(params) as (read_stream, write_stream):
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()

            tools = await session.list_tools()
            print("可用工具:", ", ".join(tool.name for tool in tools.tools))

            for name, arguments in [
                ("ssh_connect", {}),
                ("ssh_execute", {"command": "uname -a"}),
                ("ssh_execute", {"command": "ls; whoami"}),
                ("ssh_list_connections", {}),
                ("ssh_disconnect", {"all_connections": True}),
            ]:
                result = await session.call_tool(name, arguments)
                text = "\n".join(c.text for c in result.content if hasattr(c, "text"))
                status = "失败" if result.isError else "成功"
                print(f"\n[{name}] {status}\n{text}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
