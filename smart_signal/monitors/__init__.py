"""Smart Signal - Monitors Package"""

from .tick_monitor import TickMonitor

__all__ = ['TickMonitor']
