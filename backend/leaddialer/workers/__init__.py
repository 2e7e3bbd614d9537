"""
Workers Package
Background dispatcher for outbound calls
"""
from leaddialer.workers.dialer_worker import Dispatcher

__all__ = [
    "Dispatcher",
]
