"""
Resource sampling for performance samples.

Reads host memory and CPU load as ratios in [0, 1]. No psutil dependency:
reads from /proc/ on Linux, falls back to os.getloadavg() on macOS, and
reports 0.0 where neither is available.
"""

from __future__ import annotations

import os


class ResourceMonitor:
    """Gathers host load figures for the monitoring service."""

    @staticmethod
    def cpu_ratio() -> float:
        """1-minute load average divided by CPU count, capped at 1.0."""
        ncpu = os.cpu_count() or 1
        try:
            with open("/proc/loadavg") as f:
                load_1min = float(f.read().split()[0])
            return min(1.0, load_1min / ncpu)
        except (FileNotFoundError, OSError, ValueError, IndexError):
            pass
        try:
            return min(1.0, os.getloadavg()[0] / ncpu)
        except (OSError, AttributeError):
            return 0.0

    @staticmethod
    def memory_ratio() -> float:
        """Fraction of physical memory in use, from /proc/meminfo."""
        try:
            with open("/proc/meminfo") as f:
                lines = f.readlines()
            info: dict[str, int] = {}
            for line in lines[:5]:
                parts = line.split()
                if len(parts) >= 2:
                    info[parts[0].rstrip(":")] = int(parts[1])
            total = info.get("MemTotal", 0)
            available = info.get("MemAvailable", 0)
            if total > 0:
                return (total - available) / total
        except (FileNotFoundError, OSError, ValueError):
            pass
        return 0.0
