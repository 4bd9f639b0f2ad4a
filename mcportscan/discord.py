"""Discord webhook notifications for discovered Minecraft servers."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import aiohttp

from mcportscan.config import DiscordConfig

_log = logging.getLogger(__name__)

COUNTRY_LOOKUP_URL = "http://ip-api.com/json/{ip}?fields=country"
FOUND_PREFIX = "[FOUND]"
MAX_RETRIES = 3
DESCRIPTION_LIMIT = 1000
FOOTER_TEXT = "Minecraft Port Scanner"

_NUMBER = re.compile(r"\+?[0-9]+")
_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF

_COLORS = {
    ("121", True): 0x00FF00,
    ("121", False): 0x004400,
    ("120", True): 0x0099FF,
    ("120", False): 0x003366,
    ("119", True): 0xFFAA00,
    ("119", False): 0x664400,
    ("other", True): 0xFF0066,
    ("other", False): 0x660033,
}

_REQUEST_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass
class MinecraftServer:
    ip: str
    port: int
    players_online: int
    players_max: int
    version: str
    description: str
    country: str | None = None

    @property
    def is_active(self) -> bool:
        return self.players_online > 0


def _family(version: str) -> str:
    for prefix, family in (("1.21", "121"), ("1.20", "120"), ("1.19", "119")):
        if version.startswith(prefix):
            return family
    return "other"


def _truncate_description(description: str) -> str:
    if not description:
        return "No description"
    encoded = description.encode("utf-8")
    if len(encoded) > DESCRIPTION_LIMIT:
        return encoded[:DESCRIPTION_LIMIT].decode("utf-8", "ignore") + "..."
    return description


class DiscordNotifier:
    """Posts an embed about each found server to the matching webhook."""

    def __init__(
        self,
        config: DiscordConfig,
        session: Any = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.config = config
        self.retry_delay = retry_delay
        self._session = session

    def webhook_for(self, server: MinecraftServer) -> str:
        """Webhook URL for the server's version family and activity; may be empty."""
        state = "active" if server.is_active else "empty"
        return getattr(self.config, f"webhook_{_family(server.version)}_{state}")

    def color_for(self, server: MinecraftServer) -> int:
        """Embed colour for the server's version family and activity."""
        return _COLORS[(_family(server.version), server.is_active)]

    def build_payload(self, server: MinecraftServer) -> dict[str, Any]:
        """The JSON body posted to the webhook."""
        active = server.is_active
        status_emoji = "🟢" if active else "🔴"
        status_text = "Active Server" if active else "Empty Server"
        return {
            "embeds": [
                {
                    "title": f"🎮 {status_text} Found!",
                    "color": self.color_for(server),
                    "fields": [
                        {
                            "name": "🌐 IP Address",
                            "value": f"{server.ip}:{server.port}",
                            "inline": True,
                        },
                        {
                            "name": f"{status_emoji} Players",
                            "value": f"{server.players_online}/{server.players_max}",
                            "inline": True,
                        },
                        {
                            "name": "🌍 Country",
                            "value": server.country if server.country is not None else "Unknown",
                            "inline": True,
                        },
                        {
                            "name": "📦 Version",
                            "value": server.version,
                            "inline": True,
                        },
                        {
                            "name": "📝 Description",
                            "value": _truncate_description(server.description),
                            "inline": False,
                        },
                    ],
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "footer": {"text": FOOTER_TEXT},
                }
            ]
        }

    async def notify_server_found(self, server: MinecraftServer) -> bool:
        """Send the notification, retrying on failure; True when it was delivered."""
        url = self.webhook_for(server)
        if not url:
            _log.debug(
                "No webhook configured for version %s (players: %d)",
                server.version,
                server.players_online,
            )
            return False
        payload = self.build_payload(server)
        if self._session is not None:
            return await self._deliver(self._session, url, payload, server)
        async with aiohttp.ClientSession() as session:
            return await self._deliver(session, url, payload, server)

    async def _deliver(
        self, session: Any, url: str, payload: dict[str, Any], server: MinecraftServer
    ) -> bool:
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                async with session.post(url, json=payload) as response:
                    status = response.status
            except _REQUEST_ERRORS as exc:
                _log.error(
                    "Failed to send Discord notification (attempt %d/%d): %s",
                    attempt,
                    MAX_RETRIES,
                    exc,
                )
                delay = self.retry_delay
            else:
                if 200 <= status < 300:
                    _log.debug(
                        "Successfully sent Discord notification for %s:%d (%s)",
                        server.ip,
                        server.port,
                        "active" if server.is_active else "empty",
                    )
                    return True
                if status == 429:
                    _log.error(
                        "Discord webhook rate limited, attempt %d/%d", attempt, MAX_RETRIES
                    )
                    delay = self.retry_delay * 2 * attempt
                else:
                    _log.error(
                        "Discord webhook failed with status: %d (attempt %d/%d)",
                        status,
                        attempt,
                        MAX_RETRIES,
                    )
                    delay = self.retry_delay
            if attempt < MAX_RETRIES:
                await asyncio.sleep(delay)
        return False


def _parse_uint(text: str, maximum: int) -> int | None:
    if not _NUMBER.fullmatch(text):
        return None
    value = int(text)
    return value if value <= maximum else None


def extract_server_info(found_message: str) -> MinecraftServer | None:
    """Parse a ``[FOUND] ip:port - online/max - version - description`` line."""
    if not found_message.startswith(FOUND_PREFIX + " "):
        return None
    parts = found_message[len(FOUND_PREFIX) + 1 :].split(" - ")
    if len(parts) < 4:
        return None

    address = parts[0].split(":")
    if len(address) != 2:
        return None
    ip, port_text = address
    port = _parse_uint(port_text, _U16_MAX)
    if port is None:
        return None

    players = parts[1].split("/")
    if len(players) != 2:
        return None
    online = _parse_uint(players[0], _U32_MAX)
    maximum = _parse_uint(players[1], _U32_MAX)
    if online is None or maximum is None:
        return None

    return MinecraftServer(
        ip=ip,
        port=port,
        players_online=online,
        players_max=maximum,
        version=parts[2],
        description=" - ".join(parts[3:]),
    )


async def get_country_from_ip(ip: str) -> str | None:
    """Look up the country of an address; None when the lookup fails."""
    url = COUNTRY_LOOKUP_URL.format(ip=ip)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as response:
                text = await response.text()
    except _REQUEST_ERRORS as exc:
        _log.debug("Failed to get country for IP %s: %s", ip, exc)
        return None
    try:
        data = json.loads(text)
    except ValueError:
        return None
    country = data.get("country") if isinstance(data, dict) else None
    return country if isinstance(country, str) else None


async def extract_server_info_with_country(found_message: str) -> MinecraftServer | None:
    """Parse a found line and fill in the server's country."""
    server = extract_server_info(found_message)
    if server is None:
        return None
    server.country = await get_country_from_ip(server.ip)
    return server