"""Command-line entry point for the SSH MCP server."""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, List, Optional, Sequence, Tuple

from .config import AppConfig, parse_connection
from .errors import ConfigError
from .registry import ConnectionRegistry
from .server import create_server

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_NAME = "default"


def setup_logging(log_level: str = "INFO") -> None:
    """设置日志配置，输出到 stderr（stdout 用于 MCP 通信）"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ssh-mcp-server",
        description="Expose guarded SSH command execution and file transfer as MCP tools.",
    )
    parser.add_argument(
        "--config-file",
        default=None,
        help="JSON config file with a 'connections' object (default: $MCP_SSH_CONFIG)",
    )
    parser.add_argument(
        "--ssh",
        action="append",
        default=[],
        metavar="SPEC",
        help="Named connection, e.g. 'name=dev,host=10.0.0.2,port=22,user=root,password=pwd'. "
        "May be repeated.",
    )
    parser.add_argument("--default", default=None, help="Default connection name")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument(
        "--no-pre-connect",
        action="store_true",
        help="Do not connect to the configured servers at startup",
    )

    single = parser.add_argument_group("single connection (registered as 'default')")
    single.add_argument("-H", "--host", help="SSH server host")
    single.add_argument("-p", "--port", type=int, default=22, help="SSH server port")
    single.add_argument("-u", "--username", help="SSH username")
    single.add_argument("-w", "--password", help="SSH password")
    single.add_argument("-k", "--private-key", help="Path to the SSH private key")
    single.add_argument("-P", "--passphrase", help="Private key passphrase")
    single.add_argument(
        "-W", "--whitelist", help="Comma separated regular expressions of allowed commands"
    )
    single.add_argument(
        "-B", "--blacklist", help="Comma separated regular expressions of forbidden commands"
    )
    single.add_argument("--socks-proxy", help="SOCKS proxy URL, e.g. socks5://127.0.0.1:1080")
    return parser


def parse_ssh_spec(spec: str) -> Tuple[str, Dict[str, str]]:
    """解析 --ssh 参数: key=value 以逗号分隔"""
    data: Dict[str, str] = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ConfigError(f"Invalid --ssh entry {part!r}, expected key=value")
        data[key.strip()] = value.strip()

    name = data.pop("name", "")
    if not name:
        raise ConfigError(f"--ssh {spec!r} is missing name=")
    return name, data


def _split_patterns(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def build_config(argv: Optional[Sequence[str]] = None) -> AppConfig:
    """按 环境变量 -> 配置文件 -> 命令行参数 的顺序合并配置"""
    args = build_parser().parse_args(argv)

    config = AppConfig.from_env()
    config_file = args.config_file or os.getenv("MCP_SSH_CONFIG")
    if config_file:
        config = AppConfig.from_file(config_file, base=config)

    for spec in args.ssh:
        name, data = parse_ssh_spec(spec)
        config.add_connection(parse_connection(name, data))

    if args.host:
        config.add_connection(
            parse_connection(
                DEFAULT_CONNECTION_NAME,
                {
                    "host": args.host,
                    "port": args.port,
                    "username": args.username,
                    "password": args.password,
                    "private_key_path": args.private_key,
                    "passphrase": args.passphrase,
                    "socks_proxy": args.socks_proxy,
                    "command_whitelist": _split_patterns(args.whitelist),
                    "command_blacklist": _split_patterns(args.blacklist),
                },
            )
        )

    if args.default:
        config.default_connection = args.default
    if args.log_level:
        config.log_level = args.log_level
    if args.no_pre_connect:
        config.pre_connect = False

    # 校验至少有一个连接且默认连接存在
    config.resolve_default()
    return config


async def serve(config: AppConfig) -> None:
    """运行服务器，退出时关闭所有连接"""
    registry = ConnectionRegistry(config)
    server = create_server(registry, config)
    try:
        if config.pre_connect:
            await registry.connect_all()
        await server.run_stdio_async()
    finally:
        await registry.shutdown()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """主函数"""
    try:
        config = build_config(argv)
    except ConfigError as e:
        setup_logging(os.getenv("MCP_SSH_LOG_LEVEL", "INFO"))
        logger.error(f"参数解析错误: {e}")
        sys.exit(2)

    setup_logging(config.log_level)
    logger.info(f"启动 SSH MCP 服务器，连接: {', '.join(config.connections)}")

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("服务器被用户中断")
    except Exception as e:
        logger.error(f"服务器运行出错: {e}")
        sys.exit(1)
