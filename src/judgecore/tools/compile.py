"""Reference compilation tool.

Usage: python -m judgecore.tools.compile <source> <language> <destination>

Prints ``exit_code`` and ``compile_time`` (ms). When the compiler rejects the
source its diagnostics are written to <destination> instead of a binary. A
non-zero status of this tool itself means the compiler could not be run.
"""
from __future__ import annotations

import subprocess
import sys
import time
from pathlib import Path

from ..settings import load_settings


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 3:
        print("Usage: python -m judgecore.tools.compile <source> <language> <destination>", file=sys.stderr)
        return 2

    source, language, destination = args
    s = load_settings()
    cfg = s.compilers.get(language)
    if not cfg:
        print(f"no compiler configured for '{language}'", file=sys.stderr)
        return 2

    dest = Path(destination)
    dest.parent.mkdir(parents=True, exist_ok=True)
    cmd = [cfg["path"], *cfg.get("args", []), source, "-o", str(dest), *cfg.get("libs", [])]

    start = time.perf_counter()
    try:
        proc = subprocess.run(cmd, capture_output=True, timeout=s.compile_timeout_s)
        exit_code = proc.returncode
        diagnostics = proc.stderr + proc.stdout
    except subprocess.TimeoutExpired:
        exit_code = 124
        diagnostics = b"Compilation timeout\n"
    except OSError as e:
        print(f"cannot run {cfg['path']}: {e}", file=sys.stderr)
        return 127
    elapsed_ms = int((time.perf_counter() - start) * 1000)

    if exit_code != 0:
        dest.write_bytes(diagnostics)

    print(f"exit_code: {exit_code}")
    print(f"compile_time: {elapsed_ms}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
