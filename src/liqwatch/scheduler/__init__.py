"""Background scan scheduling.

Provides:
- ScanScheduler: start/stop lifecycle, bounded opportunity cache, listeners
- Listener: opportunity callback type (sync or async)
"""

from liqwatch.scheduler.scan_scheduler import Listener, ScanScheduler, cache_order

__all__ = [
    "Listener",
    "ScanScheduler",
    "cache_order",
]
