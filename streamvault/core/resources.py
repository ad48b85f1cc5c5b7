"""Resource monitoring.

Reports system resource usage (CPU, memory, disk) for the working
directories, used by the health endpoint and storage metrics.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil


@dataclass
class ResourceUsage:
    """Current system resource usage.

    Attributes:
        cpu_percent: Current CPU usage percentage (0-100).
        memory_total_gb: Total system memory in GB.
        memory_available_gb: Available memory in GB.
        memory_percent: Memory usage percentage (0-100).
        disk_total_bytes: Total disk space in bytes for the specified path.
        disk_used_bytes: Used disk space in bytes.
        disk_available_bytes: Available disk space in bytes.
        disk_percent: Disk usage percentage (0-100).
    """

    cpu_percent: float
    memory_total_gb: float
    memory_available_gb: float
    memory_percent: float
    disk_total_bytes: int
    disk_used_bytes: int
    disk_available_bytes: int
    disk_percent: float


def get_current_usage(disk_path: Optional[str] = None) -> ResourceUsage:
    """Get current system resource usage.

    Args:
        disk_path: Path to check disk usage for. Defaults to root filesystem.

    Returns:
        ResourceUsage with current resource metrics.
    """
    cpu_percent = psutil.cpu_percent(interval=0.1)

    memory = psutil.virtual_memory()

    path = Path(disk_path) if disk_path else Path("/")
    if not path.exists():
        path = Path("/")
    disk = psutil.disk_usage(str(path))

    return ResourceUsage(
        cpu_percent=round(cpu_percent, 1),
        memory_total_gb=round(memory.total / (1024**3), 2),
        memory_available_gb=round(memory.available / (1024**3), 2),
        memory_percent=round(memory.percent, 1),
        disk_total_bytes=disk.total,
        disk_used_bytes=disk.used,
        disk_available_bytes=disk.free,
        disk_percent=round(disk.percent, 1),
    )
