"""
Resource calculator for sizing how many virtual users can run at once
on this host.
"""
import logging
from typing import Dict, Optional

import psutil


class ResourceCalculator:
    """
    Estimates concurrent virtual users from available memory and CPU.

    Every virtual user holds ``connections_per_instance`` pages open, so the
    per-user cost scales with the fan-out.
    """

    # Estimated resource usage per open page holding a realtime connection
    MEMORY_PER_PAGE_MB = 150
    CPU_PER_PAGE_PERCENT = 1.5

    # Safety margins (percentage to reserve for system)
    MEMORY_RESERVE_PERCENT = 20
    CPU_RESERVE_PERCENT = 25

    MIN_CONCURRENT_USERS = 1

    def __init__(self):
        self.cpu_count = psutil.cpu_count(logical=True) or 1
        memory = psutil.virtual_memory()
        self.total_memory_gb = memory.total / (1024 ** 3)
        self.available_memory_gb = memory.available / (1024 ** 3)

        logging.info("[RESOURCE_CALCULATOR] System Resources Detected:")
        logging.info(f"  CPU Cores (logical): {self.cpu_count}")
        logging.info(f"  Total Memory: {self.total_memory_gb:.2f} GB")
        logging.info(f"  Available Memory: {self.available_memory_gb:.2f} GB")

    def get_system_resources(self) -> Dict:
        memory = psutil.virtual_memory()
        cpu_percent = psutil.cpu_percent(interval=None)
        return {
            'cpu_count': self.cpu_count,
            'cpu_percent_used': cpu_percent,
            'total_memory_gb': round(self.total_memory_gb, 2),
            'available_memory_gb': round(memory.available / (1024 ** 3), 2),
            'memory_percent_used': memory.percent,
        }

    def max_pages_by_memory(self) -> int:
        usable_memory_mb = (self.available_memory_gb * 1024) * (1 - self.MEMORY_RESERVE_PERCENT / 100)
        return int(usable_memory_mb / self.MEMORY_PER_PAGE_MB)

    def max_pages_by_cpu(self) -> int:
        cpu_percent_available = 100 - psutil.cpu_percent(interval=1)
        usable_cpu_percent = cpu_percent_available * (1 - self.CPU_RESERVE_PERCENT / 100)
        return int((self.cpu_count * usable_cpu_percent) / self.CPU_PER_PAGE_PERCENT)

    def calculate_max_concurrent_users(self, connections_per_instance: int,
                                       hard_limit: Optional[int] = None) -> int:
        """
        Calculate how many virtual users may run concurrently.

        Args:
            connections_per_instance: Pages each virtual user keeps open
            hard_limit: Optional configured cap

        Returns:
            Maximum concurrent virtual users (at least 1)
        """
        max_pages = min(self.max_pages_by_memory(), self.max_pages_by_cpu())
        max_users = max_pages // max(1, connections_per_instance)
        max_users = max(self.MIN_CONCURRENT_USERS, max_users)
        if hard_limit is not None:
            max_users = min(max_users, hard_limit)

        logging.info("[RESOURCE_CALCULATOR] Optimal Configuration:")
        logging.info(f"  Max pages: {max_pages}")
        logging.info(f"  Connections per virtual user: {connections_per_instance}")
        logging.info(f"  Max concurrent virtual users: {max_users}")
        return max_users
