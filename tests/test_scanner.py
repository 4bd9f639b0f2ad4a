import asyncio
import contextlib
import ipaddress
import json
import socket

import pytest

from mcportscan.config import Config
from mcportscan.minecraft import ConnectionRefused, ServerStatus, encode_varint, read_varint
from mcportscan.scanner import main, ping_test_servers, run_scanner, scan_range, scan_task
from mcportscan.stats import Found, OpenPort, Scanned

STATUS = {
    "version": {"name": "1.21.1", "protocol": 767},
    "players": {"max": 20, "online": 3},
    "description": {"text": "hello"},
}


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _config_dict(port, test_ips=(), base_source_port=40000, **scanning):
    values = {
        "port": port,
        "num_tasks": 1,
        "max_range_size": 1,
        "consecutive_threshold": 10,
        "chunk_size": 1,
    }
    values.update(scanning)
    return {
        "scanning": values,
        "timeouts": {"port_check_ms": 500, "connection_ms": 500, "protocol_response_ms": 500},
        "networking": {"base_source_port": base_source_port, "port_range_per_task": 10},
        "minecraft": {"protocol_version": 767},
        "test_servers": {"test_ips": list(test_ips)},
        "stats": {"stats_interval_seconds": 60},
        "discord": {
            name: ""
            for name in (
                "webhook_121_active",
                "webhook_120_active",
                "webhook_119_active",
                "webhook_other_active",
                "webhook_121_empty",
                "webhook_120_empty",
                "webhook_119_empty",
                "webhook_other_empty",
            )
        },
    }


def _config(port, **kwargs):
    return Config.from_dict(_config_dict(port, **kwargs))


async def _handle(reader, writer):
    try:
        length = await read_varint(reader)
        await reader.readexactly(length)
        await reader.readexactly(2)
        body = json.dumps(STATUS).encode("utf-8")
        packet = encode_varint(0) + encode_varint(len(body)) + body
        writer.write(encode_varint(len(packet)) + packet)
        await writer.drain()
    except (Exception, asyncio.IncompleteReadError):
        pass
    finally:
        writer.close()


@contextlib.asynccontextmanager
async def _status_server():
    server = await asyncio.start_server(_handle, "127.0.0.1", 0)
    try:
        yield server.sockets[0].getsockname()[1]
    finally:
        server.close()
        await server.wait_closed()


def _drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


def _no_source_ports(draws=None):
    while True:
        if draws is not None:
            draws.append(None)
        yield None


@pytest.mark.asyncio
async def test_ping_test_servers_reports_status():
    async with _status_server() as port:
        results = await ping_test_servers(_config(port, test_ips=["127.0.0.1"]))
    assert len(results) == 1
    ip, status = results[0]
    assert ip == "127.0.0.1"
    assert isinstance(status, ServerStatus)
    assert status.version == "1.21.1"
    assert (status.players_online, status.players_max) == (3, 20)


@pytest.mark.asyncio
async def test_ping_test_servers_records_failure():
    results = await ping_test_servers(_config(_free_port(), test_ips=["127.0.0.1"]))
    assert [ip for ip, _ in results] == ["127.0.0.1"]
    assert isinstance(results[0][1], ConnectionRefused)


@pytest.mark.asyncio
async def test_scan_range_finds_server():
    queue = asyncio.Queue()
    async with _status_server() as port:
        result = await scan_range(
            0, "127.0.0.1", _config(port), queue, _no_source_ports()
        )
    assert (result.scanned, result.found) == (1, 1)
    assert result.end_ip == ipaddress.IPv4Address("127.0.0.1")
    assert _drain(queue) == [
        OpenPort("127.0.0.1"),
        Found(f"[FOUND] 127.0.0.1:{port} - 3/20 - 1.21.1 - hello"),
        Scanned(1),
    ]


@pytest.mark.asyncio
async def test_scan_range_draws_one_source_port_per_probe():
    draws = []
    queue = asyncio.Queue()
    async with _status_server() as port:
        result = await scan_range(0, "127.0.0.1", _config(port), queue, _no_source_ports(draws))
    assert result.found == 1
    assert len(draws) == 2


@pytest.mark.asyncio
async def test_scan_range_stops_after_consecutive_empty():
    queue = asyncio.Queue()
    config = _config(
        _free_port(), chunk_size=2, max_range_size=100, consecutive_threshold=4
    )
    result = await scan_range(0, "127.0.0.1", config, queue, _no_source_ports())
    assert (result.scanned, result.found) == (4, 0)
    assert _drain(queue) == [Scanned(2), Scanned(2)]


@pytest.mark.asyncio
async def test_scan_range_respects_max_range_size():
    queue = asyncio.Queue()
    config = _config(_free_port(), chunk_size=3, max_range_size=5, consecutive_threshold=100)
    result = await scan_range(0, "127.0.0.1", config, queue, _no_source_ports())
    assert result.scanned == 5
    assert result.start_ip == ipaddress.IPv4Address("127.0.0.1")
    assert result.end_ip == ipaddress.IPv4Address("127.0.0.5")
    assert _drain(queue) == [Scanned(3), Scanned(2)]


@pytest.mark.asyncio
async def test_scan_range_rejects_zero_chunk():
    with pytest.raises(ValueError):
        await scan_range(
            0, "127.0.0.1", _config(_free_port(), chunk_size=0), asyncio.Queue(), _no_source_ports()
        )


@pytest.mark.asyncio
async def test_scan_task_emits_found_server():
    queue = asyncio.Queue()
    subnets = [(ipaddress.IPv4Address("127.0.0.0"), 31)]
    async with _status_server() as port:
        config = _config(port, base_source_port=_free_port())
        task = asyncio.create_task(scan_task(0, subnets, config, queue))
        try:
            found = None
            async with asyncio.timeout(10):
                while found is None:
                    message = await queue.get()
                    if isinstance(message, Found):
                        found = message
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
    assert found == Found(f"[FOUND] 127.0.0.1:{port} - 3/20 - 1.21.1 - hello")


@pytest.mark.asyncio
async def test_run_scanner_without_tasks_returns_empty_stats(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    stats = await run_scanner(_config(_free_port(), num_tasks=0))
    assert stats.scanned_total == 0
    assert stats.servers_found == 0
    assert stats.ports_open == 0


def test_main_missing_config_returns_error(tmp_path):
    output = tmp_path / "out"
    code = main(["--config", str(tmp_path / "missing.toml"), "--output-dir", str(output)])
    assert code == 1
    assert output.is_dir()


def test_main_runs_with_no_tasks(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    port = _free_port()
    webhooks = "\n".join(
        f'webhook_{family}_{state} = ""'
        for state in ("active", "empty")
        for family in ("121", "120", "119", "other")
    )
    (tmp_path / "scan.toml").write_text(
        f"""
[scanning]
port = {port}
num_tasks = 0
max_range_size = 1
consecutive_threshold = 1
chunk_size = 1

[timeouts]
port_check_ms = 100
connection_ms = 100
protocol_response_ms = 100

[networking]
base_source_port = 40000
port_range_per_task = 10

[minecraft]
protocol_version = 767

[test_servers]
test_ips = []

[stats]
stats_interval_seconds = 60

[discord]
{webhooks}
""",
        encoding="utf-8",
    )
    code = main(["--config", "scan.toml", "--output-dir", str(tmp_path / "out")])
    assert code == 0