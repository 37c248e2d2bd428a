"""Reference sandboxed runner.

Usage: python -m judgecore.tools.runner <time_ms> <memory_kb> <program>
       <input> <output> <hard_time_ms> <hard_memory_kb>

Runs <program> with stdin from <input> and stdout into <output> under the
hard ceilings, then prints ``exit_code``, ``signal``, ``cpu`` (ms),
``vsize`` and ``rss`` (kB), ``wall`` (ms) and ``timed_out``. The soft limits
are accepted for the caller's bookkeeping; judging against them is left to
the caller. Exit status is non-zero only if the program could not be started.
"""
from __future__ import annotations

import math
import os
import signal
import subprocess
import sys
import time

from ..settings import load_settings
from .rlimits import apply_rlimits

POLL_S = 0.005


def _vm_peak_kb(pid: int) -> int:
    try:
        with open(f"/proc/{pid}/status", "r") as f:
            for line in f:
                if line.startswith("VmPeak:"):
                    return int(line.split()[1])
    except (OSError, ValueError, IndexError):
        pass
    return 0


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 7:
        print(
            "Usage: python -m judgecore.tools.runner <time_ms> <memory_kb> <program> "
            "<input> <output> <hard_time_ms> <hard_memory_kb>",
            file=sys.stderr,
        )
        return 2

    program, input_path, output_path = args[2], args[3], args[4]
    try:
        hard_ms, hard_kb = int(args[5]), int(args[6])
    except ValueError:
        print("limits must be integers", file=sys.stderr)
        return 2

    s = load_settings()
    cpu_s = max(1, math.ceil(hard_ms / 1000))
    wall_s = hard_ms / 1000 * s.wall_time_factor

    def _preexec():
        apply_rlimits(cpu_s, hard_kb * 1024, s.max_output_kb * 1024)

    try:
        with open(input_path, "rb") as fin, open(output_path, "wb") as fout:
            proc = subprocess.Popen(
                [program],
                stdin=fin,
                stdout=fout,
                stderr=subprocess.DEVNULL,
                preexec_fn=_preexec,
                close_fds=True,
            )
    except (OSError, subprocess.SubprocessError) as e:
        print(f"cannot start {program}: {e}", file=sys.stderr)
        return 1

    start = time.monotonic()
    timed_out = False
    peak_vsize = 0
    while True:
        pid, status, usage = os.wait4(proc.pid, os.WNOHANG)
        if pid:
            break
        peak_vsize = max(peak_vsize, _vm_peak_kb(proc.pid))
        if not timed_out and time.monotonic() - start > wall_s:
            # still unreaped here, so the pid cannot have been recycled
            timed_out = True
            os.kill(proc.pid, signal.SIGKILL)
        time.sleep(POLL_S)
    wall_ms = int((time.monotonic() - start) * 1000)

    if os.WIFSIGNALED(status):
        sig = os.WTERMSIG(status)
        exit_code = 128 + sig
    else:
        sig = 0
        exit_code = os.WEXITSTATUS(status)
    proc.returncode = exit_code

    rss_kb = usage.ru_maxrss
    print(f"exit_code: {exit_code}")
    print(f"signal: {sig}")
    print(f"cpu: {int((usage.ru_utime + usage.ru_stime) * 1000)}")
    print(f"vsize: {max(peak_vsize, rss_kb)}")
    print(f"rss: {rss_kb}")
    print(f"wall: {wall_ms}")
    print(f"timed_out: {int(timed_out)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
