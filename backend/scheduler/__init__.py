"""Background scheduling for analytics snapshot refreshes.

Uses APScheduler to rebuild the cached dashboard snapshots on a cron
schedule so analytics reads stay cheap and never block outcome writes.
"""

from .scheduler import (
    MetricsScheduler,
    get_scheduler,
    shutdown_scheduler,
    start_scheduler,
)

__all__ = [
    "MetricsScheduler",
    "get_scheduler",
    "shutdown_scheduler",
    "start_scheduler",
]
