#!/usr/bin/env python3
"""Process utilities: exit waiting, metrics sampling, priority and affinity."""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Any

import psutil

from supervised_process.lookups import priority_name_from_value, priority_value

logger = logging.getLogger(__name__)


@dataclass
class RunMetrics:
    """Exit status, timing and resource counters of one run."""

    exit_code: int = 0
    run_time_ms: int = 0
    cpu_time_ms: int = 0
    user_cpu_time_ms: int = 0
    peak_working_set: int = 0
    working_set: int = 0
    paged_memory: int = 0
    private_memory: int = 0
    peak_paged_memory: int = 0
    virtual_memory: int = 0
    peak_virtual_memory: int = 0
    paged_system_memory: int = 0
    nonpaged_system_memory: int = 0


def get_process_info(pid: int) -> str:
    """Get a short diagnostic description of a process."""
    try:
        process = psutil.Process(pid)
        info = [f"Process {pid} ({process.name()})"]
        info.append(f"Status: {process.status()}")
        info.append(f"CPU Times: {process.cpu_times()}")
        info.append(f"Memory: {process.memory_info()}")
        return "\n".join(info)
    except Exception:  # noqa: BLE001
        return f"Could not get process info for PID {pid}"


def sample_metrics(pid: int, metrics: RunMetrics) -> bool:
    """Update CPU and memory counters of metrics in place from a live (or zombie) pid.

    Memory counters are only overwritten by non-zero readings, since an exited
    process reports zero memory. Returns False if the process could not be read.
    """
    try:
        process = psutil.Process(pid)
        with process.oneshot():
            cpu = process.cpu_times()
            metrics.cpu_time_ms = int((cpu.user + cpu.system) * 1000)
            metrics.user_cpu_time_ms = int(cpu.user * 1000)
            mem = process.memory_info()
    except (psutil.Error, OSError):
        return False

    _update_memory(metrics, mem)
    return True


def _update_memory(metrics: RunMetrics, mem: Any) -> None:
    if mem.rss:
        metrics.working_set = mem.rss
    peak = getattr(mem, "peak_wset", 0) or mem.rss
    metrics.peak_working_set = max(metrics.peak_working_set, peak)
    paged = getattr(mem, "pagefile", 0) or mem.vms
    if paged:
        metrics.paged_memory = paged
    private = getattr(mem, "private", 0) or getattr(mem, "data", 0)
    if private:
        metrics.private_memory = private
    peak_paged = getattr(mem, "peak_pagefile", 0) or paged
    metrics.peak_paged_memory = max(metrics.peak_paged_memory, peak_paged)
    if mem.vms:
        metrics.virtual_memory = mem.vms
    metrics.peak_virtual_memory = max(metrics.peak_virtual_memory, mem.vms)
    # Kernel pool usage is only reported on Windows
    if getattr(mem, "paged_pool", 0):
        metrics.paged_system_memory = mem.paged_pool
    if getattr(mem, "nonpaged_pool", 0):
        metrics.nonpaged_system_memory = mem.nonpaged_pool


def wait_for_exit_unreaped(proc: subprocess.Popen[Any]) -> None:
    """Block until proc exits, leaving it unreaped where the platform allows.

    On POSIX the child stays a zombie so its final CPU counters can still be
    sampled; the caller reaps it afterwards with proc.wait(). Windows keeps
    the process handle open inside Popen, so a plain wait is enough there.
    """
    if hasattr(os, "waitid"):
        try:
            os.waitid(os.P_PID, proc.pid, os.WEXITED | os.WNOWAIT)
        except ChildProcessError:
            # Already reaped elsewhere
            pass
        except OSError as e:
            logger.debug("waitid failed for %s, falling back to wait(): %s", proc.pid, e)
            proc.wait()
        return
    proc.wait()


def has_exited(proc: subprocess.Popen[Any]) -> bool:
    """Non-blocking exit check that does not reap the child."""
    if proc.returncode is not None:
        return True
    if hasattr(os, "waitid"):
        try:
            return os.waitid(os.P_PID, proc.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT) is not None
        except ChildProcessError:
            return True
    return proc.poll() is not None


def kill_process(proc: subprocess.Popen[Any]) -> None:
    """Kill a process; a process that already exited is not an error."""
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


def terminate_process(proc: subprocess.Popen[Any]) -> None:
    """Ask a process to terminate gracefully."""
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()


def set_priority(pid: int, priority_class: str) -> None:
    psutil.Process(pid).nice(priority_value(priority_class))


def get_priority(pid: int) -> str | None:
    try:
        return priority_name_from_value(psutil.Process(pid).nice())
    except (psutil.Error, OSError):
        return None


def affinity_supported() -> bool:
    return hasattr(psutil.Process, "cpu_affinity")


def mask_to_cpus(mask: int) -> list[int]:
    """Convert a processor affinity bit mask to a list of CPU indices."""
    if mask < 0:
        error_message = f"Processor affinity mask must not be negative: {mask}"
        raise ValueError(error_message)
    return [cpu for cpu in range(mask.bit_length()) if mask & (1 << cpu)]


def cpus_to_mask(cpus: list[int]) -> int:
    mask = 0
    for cpu in cpus:
        mask |= 1 << cpu
    return mask


def set_affinity(pid: int, mask: int) -> None:
    """Apply a processor affinity mask to a live process.

    Raises:
        NotImplementedError: If the platform has no affinity support.
        ValueError: If the mask selects no CPU.
    """
    if not affinity_supported():
        error_message = "Processor affinity is not supported on this platform"
        raise NotImplementedError(error_message)
    cpus = mask_to_cpus(mask)
    if not cpus:
        error_message = "Processor affinity mask selects no processor"
        raise ValueError(error_message)
    psutil.Process(pid).cpu_affinity(cpus)


def get_affinity(pid: int) -> int:
    if not affinity_supported():
        return 0
    try:
        return cpus_to_mask(psutil.Process(pid).cpu_affinity())
    except (psutil.Error, OSError) as e:
        logger.debug("Could not read processor affinity of %s: %s", pid, e)
        return 0
