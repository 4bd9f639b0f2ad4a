"""Scan statistics collected from worker messages and reported periodically."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from mcportscan.discord import DiscordNotifier, extract_server_info_with_country

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scanned:
    count: int


@dataclass(frozen=True)
class OpenPort:
    ip: str


@dataclass(frozen=True)
class Found:
    message: str


ScanMessage = Scanned | OpenPort | Found


@dataclass(frozen=True)
class StatsReport:
    scanned_total: int
    ports_open: int
    servers_found: int
    open_rate: float
    success_rate: float
    total_rate: float
    recent_rate: float
    runtime_seconds: float
    scan_delta: int
    port_delta: int
    server_delta: int


class StatsCollector:
    """Counts scanned addresses, open ports and servers, and forwards finds."""

    def __init__(
        self,
        discord: DiscordNotifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.discord = discord
        self._clock = clock
        now = clock()
        self.start_time = now
        self.last_report_time = now
        self.scanned_total = 0
        self.servers_found = 0
        self.ports_open = 0
        self._scanned_last = 0
        self._servers_last = 0
        self._ports_last = 0
        self._pending: set[asyncio.Task[None]] = set()

    def update(self, message: ScanMessage) -> None:
        """Apply one worker message; finds are logged and sent to Discord."""
        match message:
            case Scanned(count=count):
                self.scanned_total += count
            case OpenPort():
                self.ports_open += 1
            case Found(message=text):
                self.servers_found += 1
                _log.info("%s", text)
                if self.discord is not None:
                    task = asyncio.get_running_loop().create_task(self._notify(text))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            case _:
                raise TypeError(f"unknown scan message: {message!r}")

    async def _notify(self, text: str) -> None:
        server = await extract_server_info_with_country(text)
        if server is not None and self.discord is not None:
            await self.discord.notify_server_found(server)

    async def flush(self) -> None:
        """Wait for all notifications started so far to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def should_report_stats(self, interval: int) -> bool:
        """True once ``interval`` seconds have passed since the last report."""
        return int(self._clock() - self.last_report_time) >= interval

    def report_stats(self, interval: int) -> StatsReport:
        """Log totals and recent activity, then start a new reporting period."""
        now = self._clock()
        runtime = now - self.start_time
        whole_seconds = int(runtime)

        scan_delta = self.scanned_total - self._scanned_last
        server_delta = self.servers_found - self._servers_last
        port_delta = self.ports_open - self._ports_last

        total_rate = self.scanned_total * 60.0 / whole_seconds if whole_seconds > 0 else 0.0
        recent_rate = scan_delta * 60.0 / interval if scan_delta > 0 else 0.0
        if self.scanned_total > 0:
            success_rate = self.servers_found / self.scanned_total * 100.0
            open_rate = self.ports_open / self.scanned_total * 100.0
        else:
            success_rate = open_rate = 0.0

        _log.info(
            "[STATS] Total: %d IPs scanned, %d open ports (%.3f%%), %d MC servers (%.3f%%)"
            " | Rates: %.1f scans/min total, %.1f scans/min recent | Runtime: %.1fm",
            self.scanned_total,
            self.ports_open,
            open_rate,
            self.servers_found,
            success_rate,
            total_rate,
            recent_rate,
            runtime / 60.0,
        )
        if server_delta > 0 or port_delta > 0:
            _log.info(
                "[STATS] Recent activity: +%d scans, +%d open ports, +%d MC servers in last %ds",
                scan_delta,
                port_delta,
                server_delta,
                interval,
            )

        report = StatsReport(
            scanned_total=self.scanned_total,
            ports_open=self.ports_open,
            servers_found=self.servers_found,
            open_rate=open_rate,
            success_rate=success_rate,
            total_rate=total_rate,
            recent_rate=recent_rate,
            runtime_seconds=runtime,
            scan_delta=scan_delta,
            port_delta=port_delta,
            server_delta=server_delta,
        )
        self._scanned_last = self.scanned_total
        self._servers_last = self.servers_found
        self._ports_last = self.ports_open
        self.last_report_time = now
        return report