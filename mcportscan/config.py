"""Scanner configuration loaded from a TOML file."""

from __future__ import annotations

import logging
import time
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

EPOCH = time.time()
"""Wall-clock time at which the program started; log timestamps count from here."""

LOG_LEVEL_RELEASE = logging.INFO
LOG_LEVEL_DEBUG = logging.DEBUG
OUTPUT_DIR = "output"
DEFAULT_CONFIG_PATH = "config.toml"

_U16 = (0, 0xFFFF)
_U64 = (0, 2**64 - 1)
_I32 = (-(2**31), 2**31 - 1)


def _int_field(bounds: tuple[int, int]) -> Any:
    return field(metadata={"kind": "int", "bounds": bounds})


def _str_field() -> Any:
    return field(metadata={"kind": "str"})


def _str_list_field() -> Any:
    return field(metadata={"kind": "str_list"})


def _check_value(section: str, name: str, kind: str, bounds: Any, value: Any) -> Any:
    where = f"`{name}` in [{section}]"
    if kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{where} must be an integer")
        low, high = bounds
        if not low <= value <= high:
            raise ValueError(f"{where} must be between {low} and {high}")
        return value
    if kind == "str":
        if not isinstance(value, str):
            raise ValueError(f"{where} must be a string")
        return value
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{where} must be a list of strings")
    return list(value)


def _build(cls: type, data: Any, section: str) -> Any:
    if not isinstance(data, Mapping):
        raise ValueError(f"[{section}] must be a table")
    values = {}
    for spec in fields(cls):
        if spec.name not in data:
            raise ValueError(f"missing field `{spec.name}` in [{section}]")
        values[spec.name] = _check_value(
            section,
            spec.name,
            spec.metadata["kind"],
            spec.metadata.get("bounds"),
            data[spec.name],
        )
    return cls(**values)


@dataclass(frozen=True)
class ScanningConfig:
    port: int = _int_field(_U16)
    num_tasks: int = _int_field(_U64)
    max_range_size: int = _int_field(_U64)
    consecutive_threshold: int = _int_field(_U64)
    chunk_size: int = _int_field(_U64)


@dataclass(frozen=True)
class TimeoutsConfig:
    port_check_ms: int = _int_field(_U64)
    connection_ms: int = _int_field(_U64)
    protocol_response_ms: int = _int_field(_U64)


@dataclass(frozen=True)
class NetworkingConfig:
    base_source_port: int = _int_field(_U16)
    port_range_per_task: int = _int_field(_U16)


@dataclass(frozen=True)
class MinecraftConfig:
    protocol_version: int = _int_field(_I32)


@dataclass(frozen=True)
class TestServersConfig:
    __test__ = False

    test_ips: list[str] = _str_list_field()


@dataclass(frozen=True)
class StatsConfig:
    stats_interval_seconds: int = _int_field(_U64)


@dataclass(frozen=True)
class DiscordConfig:
    webhook_121_active: str = _str_field()
    webhook_120_active: str = _str_field()
    webhook_119_active: str = _str_field()
    webhook_other_active: str = _str_field()
    webhook_121_empty: str = _str_field()
    webhook_120_empty: str = _str_field()
    webhook_119_empty: str = _str_field()
    webhook_other_empty: str = _str_field()


@dataclass(frozen=True)
class Config:
    scanning: ScanningConfig
    timeouts: TimeoutsConfig
    networking: NetworkingConfig
    minecraft: MinecraftConfig
    test_servers: TestServersConfig
    stats: StatsConfig
    discord: DiscordConfig

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        """Build a configuration from parsed TOML data; raises ValueError if invalid."""
        if not isinstance(data, Mapping):
            raise ValueError("configuration must be a table")
        sections = {spec.name: spec.type for spec in fields(cls)}
        classes = {
            "scanning": ScanningConfig,
            "timeouts": TimeoutsConfig,
            "networking": NetworkingConfig,
            "minecraft": MinecraftConfig,
            "test_servers": TestServersConfig,
            "stats": StatsConfig,
            "discord": DiscordConfig,
        }
        built = {}
        for name in sections:
            if name not in data:
                raise ValueError(f"missing section [{name}]")
            built[name] = _build(classes[name], data[name], name)
        return cls(**built)

    @classmethod
    def load(cls, path: str | Path = DEFAULT_CONFIG_PATH) -> Config:
        """Read and validate the TOML configuration file at ``path``."""
        with open(path, "rb") as handle:
            data = tomllib.load(handle)
        return cls.from_dict(data)