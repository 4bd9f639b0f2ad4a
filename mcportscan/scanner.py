"""Parallel scan: workers probe address ranges and report to a stats collector."""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass

from mcportscan.config import DEFAULT_CONFIG_PATH, OUTPUT_DIR, Config
from mcportscan.discord import DiscordNotifier
from mcportscan.logger import setup_environment
from mcportscan.minecraft import (
    PingError,
    ServerStatus,
    extract_description,
    ping_server_fast,
    quick_port_check,
)
from mcportscan.network import Subnet, increment_ip, load_subnets, random_ipv4_from_subnets
from mcportscan.stats import Found, OpenPort, ScanMessage, Scanned, StatsCollector

_log = logging.getLogger(__name__)

_SOURCE_PORT_SPAN = 255
_U16_MASK = 0xFFFF

MessageQueue = asyncio.Queue  # of ScanMessage, closed with a None sentinel


@dataclass(frozen=True)
class RangeResult:
    """Outcome of scanning one contiguous address range."""

    start_ip: ipaddress.IPv4Address
    end_ip: ipaddress.IPv4Address
    scanned: int
    found: int
    elapsed: float


def _source_ports(base: int) -> Iterator[int]:
    """Cycle through the 255 local ports starting at ``base``."""
    counter = 0
    while True:
        yield (base + counter % _SOURCE_PORT_SPAN) & _U16_MASK
        counter = (counter + 1) & _U16_MASK


def _found_line(ip: str, port: int, status: ServerStatus) -> str:
    return (
        f"[FOUND] {ip}:{port} - {status.players_online}/{status.players_max}"
        f" - {status.version} - {extract_description(status.description)}"
    )


async def ping_test_servers(config: Config) -> list[tuple[str, ServerStatus | PingError]]:
    """Ping each configured test server once and log what it answered."""
    port = config.scanning.port
    results: list[tuple[str, ServerStatus | PingError]] = []
    for ip in config.test_servers.test_ips:
        _log.info("[TEST] Ping server %s:%d", ip, port)
        try:
            status = await ping_server_fast(
                ip,
                port,
                None,
                config.timeouts.connection_ms,
                config.timeouts.protocol_response_ms,
                config.minecraft.protocol_version,
            )
        except PingError as exc:
            _log.info("[MISS][TEST] %s:%d no valid response (%s)", ip, port, exc)
            results.append((ip, exc))
            continue
        _log.info(
            "[FOUND][TEST] %s:%d - %d/%d - %s - %s",
            ip,
            port,
            status.players_online,
            status.players_max,
            status.version,
            extract_description(status.description),
        )
        results.append((ip, status))
    return results


async def scan_range(
    task_id: int,
    start_ip: ipaddress.IPv4Address | str,
    config: Config,
    queue: asyncio.Queue,
    source_ports: Iterator[int | None],
) -> RangeResult:
    """Scan addresses from ``start_ip`` in chunks until the range ends or runs dry."""
    scanning = config.scanning
    timeouts = config.timeouts
    if scanning.chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    start = ipaddress.IPv4Address(start_ip)
    started = time.monotonic()
    current = start
    scanned = found = consecutive_empty = 0

    while scanned < scanning.max_range_size and consecutive_empty < scanning.consecutive_threshold:
        size = min(scanning.chunk_size, scanning.max_range_size - scanned)
        chunk = [str(increment_ip(current, offset)) for offset in range(size)]

        checks = [
            quick_port_check(ip, scanning.port, next(source_ports), timeouts.port_check_ms)
            for ip in chunk
        ]
        outcomes = await asyncio.gather(*checks, return_exceptions=True)
        open_ips = [ip for ip, is_open in zip(chunk, outcomes) if is_open is True]
        for ip in open_ips:
            queue.put_nowait(OpenPort(ip))

        pings = [
            ping_server_fast(
                ip,
                scanning.port,
                next(source_ports),
                timeouts.connection_ms,
                timeouts.protocol_response_ms,
                config.minecraft.protocol_version,
            )
            for ip in open_ips
        ]
        statuses = await asyncio.gather(*pings, return_exceptions=True)
        chunk_found = 0
        for ip, status in zip(open_ips, statuses):
            if isinstance(status, ServerStatus):
                chunk_found += 1
                found += 1
                consecutive_empty = 0
                queue.put_nowait(Found(_found_line(ip, scanning.port, status)))

        scanned += size
        queue.put_nowait(Scanned(size))
        if chunk_found == 0 and not open_ips:
            consecutive_empty += size
        current = increment_ip(current, size)

    elapsed = time.monotonic() - started
    whole_seconds = int(elapsed)
    per_minute = scanned * 60.0 / whole_seconds if whole_seconds > 0 else float(scanned)
    end_ip = increment_ip(start, scanned - 1)

    if found > 0:
        _log.debug(
            "[TASK %d] [RANGE] %s-%s - Found %d servers in %d IPs in %.2fs"
            " (%.1f scans/min) - Density: %.2f%%",
            task_id + 1,
            start,
            end_ip,
            found,
            scanned,
            elapsed,
            per_minute,
            found / scanned * 100.0,
        )
    else:
        _log.debug(
            "[TASK %d] Range %s-%s - %d scans in %.2fs (%.1f scans/min)",
            task_id + 1,
            start,
            end_ip,
            scanned,
            elapsed,
            per_minute,
        )
    return RangeResult(start, end_ip, scanned, found, elapsed)


async def scan_task(
    task_id: int, subnets: list[Subnet], config: Config, queue: asyncio.Queue
) -> None:
    """Scan random ranges forever, each starting inside one of ``subnets``."""
    networking = config.networking
    base = (networking.base_source_port + task_id * networking.port_range_per_task) & _U16_MASK
    ports = _source_ports(base)
    while True:
        start = random_ipv4_from_subnets(subnets)
        _log.debug("[TASK %d] New start IP %s (from subnet)", task_id + 1, start)
        await scan_range(task_id, start, config, queue, ports)


async def _collect(stats: StatsCollector, queue: asyncio.Queue, interval: int) -> None:
    while (message := await queue.get()) is not None:
        stats.update(message)
        if stats.should_report_stats(interval):
            stats.report_stats(interval)


async def run_scanner(config: Config | None = None) -> StatsCollector:
    """Ping the test servers, then run all scan workers until they stop."""
    if config is None:
        config = Config.load()
    subnets = load_subnets()
    notifier = DiscordNotifier(config.discord)

    await ping_test_servers(config)
    _log.info("Starting parallel scan with %d tasks", config.scanning.num_tasks)

    queue: asyncio.Queue[ScanMessage | None] = asyncio.Queue()
    stats = StatsCollector(discord=notifier)
    consumer = asyncio.create_task(_collect(stats, queue, config.stats.stats_interval_seconds))
    workers = [
        asyncio.create_task(scan_task(task_id, subnets, config, queue))
        for task_id in range(config.scanning.num_tasks)
    ]
    try:
        await asyncio.gather(*workers, return_exceptions=True)
    finally:
        for worker in workers:
            worker.cancel()
        queue.put_nowait(None)
        await consumer
    await stats.flush()
    return stats


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        prog="mcportscan", description="Scan IPv4 ranges for Minecraft servers."
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="TOML configuration file")
    parser.add_argument("--output-dir", default=OUTPUT_DIR, help="directory for the log file")
    parser.add_argument("--debug", action="store_true", help="log debug messages")
    args = parser.parse_args(argv)

    setup_environment(args.debug, args.output_dir)
    try:
        config = Config.load(args.config)
    except (OSError, ValueError) as exc:
        _log.error("Failed to load config: %s", exc)
        return 1
    try:
        asyncio.run(run_scanner(config))
    except KeyboardInterrupt:
        return 130
    return 0