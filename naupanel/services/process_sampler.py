# naupanel/services/process_sampler.py
"""
Best-effort resource sampling of a managed server's Java process.

The process is located by scanning the process table for a command line that
contains the server's root directory. CPU% is the delta of the process's CPU
time over the delta of total system CPU time between two consecutive calls
for the same pid, so the first sample after a (re)start is always 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

# guest/guest_nice are already included in user/nice on Linux
SYSTEM_CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")


@dataclass
class CpuSample:
    process_ticks: float
    system_ticks: float


@dataclass
class ProcessUsage:
    pid: int
    cpu_percent: int
    mem_mb: int

    def to_dict(self) -> dict:
        return {"pid": self.pid, "cpuPercent": self.cpu_percent, "memMB": self.mem_mb}


class ProcessSampler:
    """Tracks CPU samples per pid and turns them into usage snapshots."""

    def __init__(self):
        self._samples: dict[int, CpuSample] = {}
        self._pid_by_root: dict[str, int] = {}

    # Platform hooks -----------------------------------------------------

    def find_pid(self, root: str) -> Optional[int]:
        raise NotImplementedError

    def read_process_ticks(self, pid: int) -> float:
        raise NotImplementedError

    def read_system_ticks(self) -> float:
        raise NotImplementedError

    def read_rss_bytes(self, pid: int) -> int:
        raise NotImplementedError

    # --------------------------------------------------------------------

    def _cpu_percent(self, pid: int, current: CpuSample) -> int:
        previous = self._samples.get(pid)
        self._samples[pid] = current
        if previous is None:
            return 0
        system_delta = current.system_ticks - previous.system_ticks
        process_delta = current.process_ticks - previous.process_ticks
        if system_delta <= 0 or process_delta < 0:
            return 0
        return max(0, min(100, round(process_delta / system_delta * 100)))

    def sample(self, root: Path) -> Optional[ProcessUsage]:
        """Return usage for the process serving ``root`` or None when not found."""
        key = str(root)
        pid = self.find_pid(key)
        if pid is None:
            stale = self._pid_by_root.pop(key, None)
            if stale is not None:
                self._samples.pop(stale, None)
            return None

        previous_pid = self._pid_by_root.get(key)
        if previous_pid is not None and previous_pid != pid:
            # Server restarted under a new process
            self._samples.pop(previous_pid, None)
        self._pid_by_root[key] = pid

        try:
            current = CpuSample(self.read_process_ticks(pid), self.read_system_ticks())
            rss = self.read_rss_bytes(pid)
        except (psutil.Error, OSError) as e:
            logger.debug("Process sample for pid %s failed: %s", pid, e)
            self._samples.pop(pid, None)
            return None

        return ProcessUsage(
            pid=pid,
            cpu_percent=self._cpu_percent(pid, current),
            mem_mb=round(rss / (1024 * 1024)),
        )


class PsutilProcessSampler(ProcessSampler):
    """Samples through psutil; ticks are CPU seconds."""

    def find_pid(self, root: str) -> Optional[int]:
        for proc in psutil.process_iter(["pid", "cmdline"]):
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if root in cmdline:
                return proc.info["pid"]
        return None

    def read_process_ticks(self, pid: int) -> float:
        times = psutil.Process(pid).cpu_times()
        return times.user + times.system

    def read_system_ticks(self) -> float:
        times = psutil.cpu_times()
        return sum(getattr(times, name, 0.0) for name in SYSTEM_CPU_FIELDS)

    def read_rss_bytes(self, pid: int) -> int:
        return psutil.Process(pid).memory_info().rss


def default_sampler() -> ProcessSampler:
    return PsutilProcessSampler()
