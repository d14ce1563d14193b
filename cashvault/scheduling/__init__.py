"""Job scheduling helpers."""

from cashvault.scheduling.crontab import render_crontab
from cashvault.scheduling.throttle import KeyedThrottle

__all__ = ["KeyedThrottle", "render_crontab"]
