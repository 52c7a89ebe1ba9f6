"""External process execution.

Every command runs with an explicit working directory and environment; the
builder never changes its own cwd. Output is decoded as UTF-8 with undecodable
bytes replaced.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from vercel_builder.errors import CommandError
from vercel_builder.logging import get_logger

log = get_logger(__name__)


def _log_lines(text: str, command: str) -> None:
    if log.isEnabledFor(logging.DEBUG):
        for line in text.splitlines():
            log.debug("%s", line, extra={"command": command})


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    stdout_only: bool = False,
) -> str:
    """Run *cmd* to completion and return its output.

    By default stderr is folded into stdout. With *stdout_only* the two are
    kept apart and only stdout is returned; stderr still ends up in the
    CommandError output when the command fails.

    Raises CommandError on a non-zero exit or when *timeout* elapses.
    """
    argv = [str(a) for a in cmd if a]
    full_env = os.environ.copy()
    if env:
        full_env.update(env)
    log.info("Running %s", " ".join(argv), extra={"command": argv[0]})
    try:
        proc = subprocess.run(
            argv,
            cwd=cwd,
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE if stdout_only else subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        out = exc.output or ""
        if isinstance(out, bytes):
            # TimeoutExpired keeps the raw bytes on some platforms
            out = out.decode("utf-8", errors="replace")
        raise CommandError(argv, None, out) from exc
    except FileNotFoundError as exc:
        raise CommandError(argv, 127, str(exc)) from exc

    stdout = proc.stdout or ""
    stderr = proc.stderr or ""
    _log_lines(stdout, argv[0])
    _log_lines(stderr, argv[0])
    if proc.returncode != 0:
        raise CommandError(argv, proc.returncode, stdout + stderr)
    return stdout
