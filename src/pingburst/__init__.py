"""PingBurst: keep-alive monitor that pings backends in scheduled bursts."""

__version__ = "1.0.0"
