from __future__ import annotations

import resource


def _set(which: int, soft: int, hard: int) -> None:
    # an unprivileged process cannot raise its hard ceiling
    _, current = resource.getrlimit(which)
    if current != resource.RLIM_INFINITY:
        hard = min(hard, current)
        soft = min(soft, hard)
    resource.setrlimit(which, (soft, hard))


def apply_rlimits(cpu_seconds: int, memory_bytes: int, output_bytes: int) -> None:
    """
    Process-level ceilings for the judged program: CPU time (SIGXCPU at the
    limit, SIGKILL one second later), address space, size of any file it
    writes, and stack (bounded by the address space).
    """
    _set(resource.RLIMIT_CPU, cpu_seconds, cpu_seconds + 1)
    _set(resource.RLIMIT_AS, memory_bytes, memory_bytes)
    _set(resource.RLIMIT_FSIZE, output_bytes, output_bytes)
    _set(resource.RLIMIT_STACK, memory_bytes, memory_bytes)
    _set(resource.RLIMIT_CORE, 0, 0)
