# mcportscan

An asynchronous scanner that looks for Minecraft servers. Each worker picks
a start address, either from a list of subnets or at random among public
IPv4 addresses, and walks forward through the range in chunks. It checks
the Minecraft port on every address, sends a server list ping to every open
port, and logs each server that answers. Every server it finds can be
posted to a Discord webhook, with a separate webhook per version family
(1.21, 1.20, 1.19, other) and per state (active: at least one player
online, or empty).

## Installation

```
pip install .
```

## Running

Run the scanner from a directory that holds a `config.toml`:

```
mcportscan
```

Options:

- `--config PATH`: the TOML configuration file (default `config.toml`).
- `--output-dir DIR`: the directory for the log file (default `output`).
  It is created if it does not exist.
- `--debug`: log debug messages as well, such as each range a worker has
  finished.

Log lines go to standard output and to `log.txt` in the output directory.
The log file is removed and started fresh on each run. Each line begins
with the level, the time elapsed since start-up and the thread name.

Before scanning, every address in `test_ips` is pinged once and the answer
or the failure is logged as `[FOUND][TEST]` or `[MISS][TEST]`. Each server
found during the scan is logged as

```
[FOUND] ip:port - online/max - version - description
```

Whenever `stats_interval_seconds` have passed, a `[STATS]` line gives the
number of addresses scanned, the open ports, the servers found, the overall
and recent scan rates and the run time, followed by a line of recent
activity if any ports or servers were found in that period.

The command exits with status 1 if the configuration cannot be read or is
invalid, and with status 130 when interrupted.

### Subnets

If `assets/ips.txt` exists in the working directory, each start address is
picked inside one of the subnets listed there, one `a.b.c.d/prefix` per
line. Blank lines, lines starting with `#` and malformed entries are
skipped. If the file cannot be read, the scanner picks random addresses
instead, leaving out private, loopback and `0.x.x.x` addresses.

### How a range is scanned

A worker scans `chunk_size` addresses at a time, checking them all at once.
It stops the range after `max_range_size` addresses, or once
`consecutive_threshold` addresses in a row have shown no open port, and
then picks a new start address. Worker `n` (counting from 0) binds its
outgoing connections to local ports cycling through 255 ports from
`base_source_port + n * port_range_per_task`.

## Configuration

`config.toml` must contain every table and key below; a missing key or a
value of the wrong type or out of range is an error.

```toml
[scanning]
port = 25565
num_tasks = 8
max_range_size = 256
consecutive_threshold = 64
chunk_size = 32

[timeouts]
port_check_ms = 500
connection_ms = 1000
protocol_response_ms = 1500

[networking]
base_source_port = 40000
port_range_per_task = 256

[minecraft]
protocol_version = 767

[test_servers]
test_ips = []

[stats]
stats_interval_seconds = 30

[discord]
webhook_121_active = ""
webhook_120_active = ""
webhook_119_active = ""
webhook_other_active = ""
webhook_121_empty = ""
webhook_120_empty = ""
webhook_119_empty = ""
webhook_other_empty = ""
```

If a webhook is left empty, servers of that kind are not sent to Discord.
Before posting, the scanner looks up the server's country through an online
IP geolocation service; if that fails, the country is shown as "Unknown".
A post that fails is retried up to three times in all, waiting longer
after a rate-limit answer.

## Using it as a library

The modules can also be used on their own:

```python
import asyncio
from mcportscan.minecraft import ping_server_fast, extract_description

status = asyncio.run(ping_server_fast("127.0.0.1", 25565, None, 1000, 1500, 767))
print(status.version, status.players_online, status.players_max)
print(extract_description(status.description))
```

- `mcportscan.config`: `Config.load(path)` reads and checks the TOML file;
  `Config.from_dict(data)` does the same for data already parsed.
- `mcportscan.network`: `load_subnets`, `random_ip_from_subnet`,
  `random_ipv4_from_subnets`, `random_ipv4_fallback` and `increment_ip`,
  which adds an offset to an address and wraps around the 32-bit space.
- `mcportscan.minecraft`: `quick_port_check` returns whether a TCP
  connection succeeds in time; `ping_server_fast` returns a `ServerStatus`
  (`version`, `players_online`, `players_max`, `description`). Failed pings
  raise `PingError` or one of its subclasses: `PingTimeout`,
  `ConnectionRefused`, `NetworkError` and `ProtocolError`. The module also
  has `encode_varint`, `read_varint`, `build_handshake` and
  `extract_description`, which flattens a description into plain text.
- `mcportscan.discord`: `extract_server_info` parses `[FOUND]` lines into a
  `MinecraftServer`; `DiscordNotifier` chooses the webhook and colour
  (`webhook_for`, `color_for`), builds the embed (`build_payload`) and posts
  it (`notify_server_found`, which returns whether it was delivered).
- `mcportscan.stats`: `StatsCollector` keeps the running counters from
  `Scanned`, `OpenPort` and `Found` messages; `report_stats` logs them and
  returns a `StatsReport`.
- `mcportscan.scanner`: `ping_test_servers`, `scan_range`, `scan_task`,
  `run_scanner` and `main`, the command's entry point.

## What it does not do

Only IPv4 addresses and a single port are scanned. Found servers are kept
nowhere but in the log and the Discord posts: there is no database or
results file, and a stopped scan cannot be resumed. The scan runs until it
is interrupted.

## Tests

```
pip install .[test]
pytest
```