"""
命令执行器测试
"""

import asyncio
import socket

import paramiko
import pytest

from conftest import FakeChannel
from ssh_mcp_server.errors import CommandExecutionError, CommandTimeoutError, StreamError
from ssh_mcp_server.executor import CommandExecutor


@pytest.fixture
def executor():
    return CommandExecutor(poll_interval=0.005)


@pytest.mark.asyncio
async def test_returns_stdout(executor):
    channel = FakeChannel(stdout=b"total 0\n", stderr=b"warning\n")

    output = await executor.run(channel, "ls", timeout=1)

    assert output == "total 0\n"
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_output_arriving_later(executor):
    channel = FakeChannel(stdout=b"done\n", delay=0.03)
    assert await executor.run(channel, "sleep 0.03") == "done\n"


@pytest.mark.asyncio
async def test_nonzero_exit_raises(executor):
    channel = FakeChannel(stdout=b"partial", stderr=b"No such file or directory\n", exit_code=2)

    with pytest.raises(CommandExecutionError) as exc_info:
        await executor.run(channel, "cat /missing", timeout=1)

    assert exc_info.value.exit_code == 2
    assert "No such file or directory" in exc_info.value.stderr
    assert "exit code: 2" in exc_info.value.message
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_channel_closed_without_exit_status(executor):
    channel = FakeChannel(stdout=b"half", drop=True)

    with pytest.raises(StreamError):
        await executor.run(channel, "tail -f log", timeout=1)
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_closed_paramiko_channel_is_stream_error(executor):
    """传输断开时 paramiko 关闭通道，退出码为 -1"""
    channel = paramiko.Channel(1)
    with channel.lock:
        channel._set_closed()

    with pytest.raises(StreamError):
        await executor.run(channel, "sleep 100", timeout=1)


@pytest.mark.asyncio
async def test_socket_error_becomes_stream_error(executor):
    channel = FakeChannel(stdout=b"x")

    def broken(nbytes):
        raise socket.error("connection reset")

    channel.recv = broken

    with pytest.raises(StreamError) as exc_info:
        await executor.run(channel, "ls")
    assert "connection reset" in exc_info.value.message
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_timeout_leaves_command_running(executor):
    """超时只影响调用方，输出收集继续到命令结束"""
    channel = FakeChannel(stdout=b"late\n", delay=0.2)

    with pytest.raises(CommandTimeoutError) as exc_info:
        await executor.run(channel, "sleep 5", timeout=0.02)

    assert exc_info.value.kind == "TimeoutError"
    assert channel.close_calls == 0
    assert len(executor._collectors) == 1

    await asyncio.sleep(0.3)
    assert channel.close_calls == 1
    assert not executor._collectors


@pytest.mark.asyncio
async def test_shutdown_cancels_collectors(executor):
    channel = FakeChannel(delay=10)

    with pytest.raises(CommandTimeoutError):
        await executor.run(channel, "sleep 10", timeout=0.01)

    await executor.shutdown()
    assert channel.close_calls == 1
    assert not executor._collectors
