"""Building blocks for an overlay mesh network node: timer wheels, remote address lists, tunnel routes, hole punching settings, a stand-in device and a command shell."""

__version__ = "0.1.0"

__all__ = [
    "commands",
    "disabled_tun",
    "punchy",
    "remote_list",
    "route",
    "session",
    "timerwheel",
]