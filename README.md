# meshtun

Building blocks for an overlay mesh network node, in plain Python with no
third-party dependencies.

## Modules

- `meshtun.timerwheel`: `TimerWheel` and `SystemTimerWheel`, lazily ticking
  timer wheels. `add(value, timeout)` puts a value in the slot for its
  timeout (rounded up to whole ticks and capped at the wheel's span),
  `advance(now)` moves the wheel forward by the ticks elapsed, and `purge()`
  returns expired values one at a time, or `None` when none are left.
  `TimerWheel` advances itself on every `add` and keeps values in the order
  they were added; `SystemTimerWheel` is guarded by a lock, is only advanced
  when you call `advance`, and puts the newest value first in its slot.
  Timeouts are `timedelta` objects or numbers of seconds.
- `meshtun.punchy`: `Punchy` reads the NAT hole punching settings from a
  nested settings mapping: `punchy.punch` (or the older top level `punchy`),
  `punchy.respond` (or the older `punch_back`) and `punchy.delay` (default one
  second). They are exposed as the properties `punch`, `respond` and `delay`.
  `reload(settings, initial)` applies changed values; a change to `punch` on
  reload is logged and ignored. `parse_duration` reads durations such as
  `"1m"`, `"1h30m"` or `"-1.5s"` and raises `ValueError` on bad input.
- `meshtun.remote_list`: `RemoteList` caches the underlay addresses (`UdpAddr`)
  known for one peer, per owner: learned addresses (`learn_remote`), reported
  ones (`set_reported_v4`, `set_reported_v6`, `prepend_v4`, `prepend_v6`) and
  relays (`set_relays`). Blocked addresses (`block_remote`) are left out.
  `rebuild`, `count`, `copy_addrs` and `iter_addrs` give a deduplicated list
  sorted with preferred ranges first, then IPv6, then public IPv4 before
  private IPv4, then by address and port. `copy_cache` returns the raw cache
  as `CacheEntry` objects keyed by owner. `is_preferred` and `is_private_ip`
  are available on their own.
- `meshtun.route`: `parse_routes` and `parse_unsafe_routes` check the
  `tun.routes` and `tun.unsafe_routes` settings and return `Route` objects,
  raising `RouteError` (a `ValueError`) with a message naming the bad entry.
  `make_route_tree` builds a `RouteTree` mapping each unsafe route to its
  `via` host for longest-prefix lookups with `most_specific_contains`.
  `ip_within` tests whether one IPv4 network lies inside another, and
  `adv_mss` works out the advertised MSS for a route.
- `meshtun.disabled_tun`: `DisabledTun`, a stand-in device with no operating
  system interface behind it. `write` counts and drops packets, except
  unfragmented IPv4 ICMP echo requests, which are answered: the reply is
  queued and returned by `read`. `route_for` always returns 0. It is a
  context manager that closes itself. `ip_checksum` and `pretty_packet` are
  the helpers it uses.
- `meshtun.commands` and `meshtun.session`: a small command shell.
  A `CommandRegistry` holds `Command` objects (with a built-in `help`) and
  looks them up by name or prefix. `execute_command` parses a command's
  `argparse` flags and runs its callback. A `Session` works on its own copy of
  the registry plus a `logout` command; `dispatch(line, writer)` splits the
  line shell-style, answers `-h`/`-help`, lists commands for empty or unknown
  input, and `complete(line)` completes a command name. Output goes through
  a `StringWriter`, which accepts text or binary streams.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Routes:

```python
import ipaddress
from meshtun.route import parse_unsafe_routes, make_route_tree

settings = {
    "tun": {
        "unsafe_routes": [
            {"via": "192.168.0.1", "route": "1.0.0.0/28"},
            {"via": "192.168.0.2", "route": "1.0.0.1/32"},
        ]
    }
}
network = ipaddress.ip_network("10.0.0.0/24")
routes = parse_unsafe_routes(settings, network)
tree = make_route_tree(routes, True, None)
print(tree.most_specific_contains(ipaddress.ip_address("1.0.0.1")))  # 192.168.0.2
```

A timer wheel:

```python
from datetime import datetime, timedelta
from meshtun.timerwheel import SystemTimerWheel

wheel = SystemTimerWheel(timedelta(seconds=1), timedelta(seconds=10))
start = datetime.now()
wheel.advance(start)
wheel.add("peer-a", 1)
wheel.advance(start + timedelta(seconds=3))
print(wheel.purge())  # peer-a
print(wheel.purge())  # None
```

A command session:

```python
import io
from meshtun.commands import Command, CommandRegistry, StringWriter
from meshtun.session import Session

registry = CommandRegistry()
registry.register(
    Command(
        name="echo",
        short_description="Echoes its arguments",
        callback=lambda flags, args, writer: writer.write_line(" ".join(args)),
    )
)
session = Session(registry)
out = io.StringIO()
session.dispatch("echo hello world", StringWriter(out))
print(out.getvalue())  # hello world
```

## What it does not do

These are pieces, not a running node. The package has no command-line
program, does not read configuration files (settings are passed in as
mappings), does not create or configure operating system tun interfaces
(`DisabledTun` is the only device), and has no SSH or network server: a
`Session` dispatches the lines you hand it, but nothing here accepts
connections or authenticates users. There is no handshake, encryption,
lighthouse or relay logic.