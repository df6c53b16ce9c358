# utils/performance_monitor.py

import gc
import logging

import psutil

logger = logging.getLogger(__name__)


class MemoryMonitor:
    """
    Detect sustained system memory pressure.

    A reading above the limit triggers one garbage collection and a second
    reading; only a second reading above the limit counts as pressure.
    """

    def __init__(self, limit_percent: float = 95.0):
        self.limit_percent = limit_percent

    def memory_percent(self) -> float:
        return psutil.virtual_memory().percent

    def under_pressure(self) -> bool:
        if self.memory_percent() <= self.limit_percent:
            return False

        gc.collect()
        percent = self.memory_percent()
        if percent > self.limit_percent:
            logger.error("Memory usage %.1f%% exceeds limit %.1f%%",
                         percent, self.limit_percent)
            return True
        return False

    @staticmethod
    def get_system_info() -> dict:
        """Get current system information"""
        memory = psutil.virtual_memory()
        return {
            'cpu_count': psutil.cpu_count(logical=False),
            'cpu_count_logical': psutil.cpu_count(logical=True),
            'memory_total_gb': memory.total / (1024**3),
            'memory_available_gb': memory.available / (1024**3),
            'memory_percent': memory.percent
        }
