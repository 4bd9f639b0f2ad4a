"""Minecraft server list ping: TCP probes, handshake packets and status parsing."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import ipaddress
import json
import socket
from dataclasses import dataclass
from typing import Any, Mapping

STATUS_REQUEST = b"\x01\x00"
_MASK32 = 0xFFFFFFFF
_U32_MAX = 0xFFFFFFFF


class PingError(Exception):
    """Base class for failures while pinging a server."""


class PingTimeout(PingError):
    def __str__(self) -> str:
        return "Timeout"


class ConnectionRefused(PingError):
    def __str__(self) -> str:
        return "Connection refused"


class NetworkError(PingError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Network error: {self.message}"


class ProtocolError(PingError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Protocol error: {self.message}"


def _require_u32(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _U32_MAX:
        raise ProtocolError(f"invalid value for `{name}`")
    return value


@dataclass(frozen=True)
class ServerStatus:
    version: str
    players_online: int
    players_max: int
    description: Any = None

    @classmethod
    def from_json(cls, data: str | bytes | Mapping[str, Any]) -> ServerStatus:
        """Parse a status response; raises ProtocolError when it is malformed."""
        if isinstance(data, (str, bytes, bytearray)):
            try:
                data = json.loads(data)
            except ValueError as exc:
                raise ProtocolError(str(exc)) from exc
        if not isinstance(data, Mapping):
            raise ProtocolError("expected a JSON object")
        version = data.get("version")
        players = data.get("players")
        if not isinstance(version, Mapping) or "name" not in version:
            raise ProtocolError("missing field `version.name`")
        if not isinstance(version["name"], str):
            raise ProtocolError("invalid value for `version.name`")
        if not isinstance(players, Mapping):
            raise ProtocolError("missing field `players`")
        for key in ("max", "online"):
            if key not in players:
                raise ProtocolError(f"missing field `players.{key}`")
        return cls(
            version=version["name"],
            players_online=_require_u32(players["online"], "players.online"),
            players_max=_require_u32(players["max"], "players.max"),
            description=data.get("description"),
        )


def encode_varint(value: int) -> bytes:
    """Encode a 32-bit signed integer as a protocol VarInt."""
    if not -(2**31) <= value < 2**31:
        raise ValueError(f"VarInt out of range: {value}")
    value &= _MASK32
    out = bytearray()
    while value & ~0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


async def _read_byte(reader: asyncio.StreamReader) -> int:
    try:
        data = await reader.readexactly(1)
    except asyncio.IncompleteReadError as exc:
        raise ProtocolError("early eof") from exc
    except OSError as exc:
        raise ProtocolError(str(exc)) from exc
    return data[0]


async def read_varint(reader: asyncio.StreamReader) -> int:
    """Read one VarInt from a stream; raises ProtocolError on EOF or overlong input."""
    result = 0
    num_read = 0
    while True:
        byte = await _read_byte(reader)
        result |= (byte & 0x7F) << (7 * num_read)
        num_read += 1
        if num_read > 5:
            raise ProtocolError("VarInt too big")
        if not byte & 0x80:
            break
    result &= _MASK32
    return result - (1 << 32) if result & 0x80000000 else result


def build_handshake(server_ip: str, server_port: int, protocol_version: int) -> bytes:
    """Length-prefixed handshake packet requesting the status state."""
    _check_port(server_port)
    ip_bytes = server_ip.encode("utf-8")
    packet = b"".join(
        (
            b"\x00",
            encode_varint(protocol_version),
            encode_varint(len(ip_bytes)),
            ip_bytes,
            server_port.to_bytes(2, "big"),
            b"\x01",
        )
    )
    return encode_varint(len(packet)) + packet


def extract_description(desc: Any) -> str:
    """Flatten a status description (chat component) into plain text."""
    if isinstance(desc, Mapping):
        if "text" in desc:
            text = desc["text"]
            return text if isinstance(text, str) else ""
        extra = desc.get("extra")
        if isinstance(extra, list):
            return "".join(
                item["text"]
                for item in extra
                if isinstance(item, Mapping) and isinstance(item.get("text"), str)
            )
    return json.dumps(desc, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def _check_port(port: int) -> None:
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port out of range: {port}")


def _ipv4_address(server_ip: str, server_port: int) -> tuple[str, int]:
    _check_port(server_port)
    return str(ipaddress.IPv4Address(server_ip)), server_port


def _bound_socket(source_port: int | None, nodelay: bool) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setblocking(False)
        if source_port is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if nodelay:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        if source_port is not None:
            _check_port(source_port)
            sock.bind(("0.0.0.0", source_port))
    except BaseException:
        sock.close()
        raise
    return sock


async def quick_port_check(
    server_ip: str,
    server_port: int,
    source_port: int | None = None,
    timeout_ms: int = 1000,
) -> bool:
    """Return True when a TCP connection succeeds within the timeout."""
    address = _ipv4_address(server_ip, server_port)
    loop = asyncio.get_running_loop()

    async def attempt() -> None:
        sock = _bound_socket(source_port, nodelay=True)
        try:
            await loop.sock_connect(sock, address)
        finally:
            sock.close()

    try:
        await asyncio.wait_for(attempt(), timeout_ms / 1000)
    except (OSError, TimeoutError):
        return False
    return True


async def _connect(
    server_ip: str, server_port: int, source_port: int | None
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    if source_port is None:
        return await asyncio.open_connection(server_ip, server_port)
    address = _ipv4_address(server_ip, server_port)
    sock = _bound_socket(source_port, nodelay=False)
    try:
        await asyncio.get_running_loop().sock_connect(sock, address)
        return await asyncio.open_connection(sock=sock)
    except BaseException:
        sock.close()
        raise


async def _read_status(reader: asyncio.StreamReader) -> ServerStatus:
    await read_varint(reader)  # packet length
    await read_varint(reader)  # packet id
    json_length = await read_varint(reader)
    if json_length < 0:
        raise ProtocolError(f"negative string length: {json_length}")
    try:
        payload = await reader.readexactly(json_length)
    except asyncio.IncompleteReadError as exc:
        raise NetworkError("early eof") from exc
    except OSError as exc:
        raise NetworkError(str(exc)) from exc
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolError(str(exc)) from exc
    return ServerStatus.from_json(text)


async def ping_server_fast(
    server_ip: str,
    server_port: int,
    source_port: int | None = None,
    connection_timeout_ms: int = 1000,
    protocol_timeout_ms: int = 1000,
    protocol_version: int = 767,
) -> ServerStatus:
    """Perform a status ping and return the parsed response; raises PingError."""
    _check_port(server_port)
    try:
        reader, writer = await asyncio.wait_for(
            _connect(server_ip, server_port, source_port), connection_timeout_ms / 1000
        )
    except TimeoutError as exc:
        raise PingTimeout() from exc
    except ConnectionRefusedError as exc:
        raise ConnectionRefused() from exc
    except OSError as exc:
        if exc.errno == errno.EADDRINUSE:
            raise NetworkError("Port in use") from exc
        raise NetworkError(str(exc)) from exc

    try:
        try:
            writer.write(build_handshake(server_ip, server_port, protocol_version))
            writer.write(STATUS_REQUEST)
            await writer.drain()
        except OSError as exc:
            raise NetworkError(str(exc)) from exc
        try:
            return await asyncio.wait_for(_read_status(reader), protocol_timeout_ms / 1000)
        except TimeoutError as exc:
            raise PingTimeout() from exc
    finally:
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()