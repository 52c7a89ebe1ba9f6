"""Error taxonomy for the build pipeline.

Every failure that aborts a build is a `BuildError`. The stage runner fills in
`stage` when the error escapes a stage, so callers always know where a run
stopped. Process failures are raised as `CommandError` and wrapped into
`StageFailure` by the runner.
"""

from __future__ import annotations


class BuildError(Exception):
    """Base class for build failures surfaced to the platform."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage

    def __str__(self) -> str:
        msg = super().__str__()
        if self.stage:
            return f"[{self.stage}] {msg}"
        return msg


class InvalidEntrypoint(BuildError):
    pass


class ManifestNotFound(BuildError):
    pass


class FrameworkNotResolvable(BuildError):
    pass


class UnsupportedFrameworkVersion(BuildError):
    def __init__(self, version: str, minimum: str, *, stage: str | None = None) -> None:
        super().__init__(f"nuxt >= {minimum} is required, detected version {version}", stage=stage)
        self.version = version
        self.minimum = minimum


class LauncherTemplateError(BuildError):
    pass


class StageOrderError(BuildError):
    pass


class StageFailure(BuildError):
    """A stage raised something that is not a `BuildError`.

    `summary` holds the tail of the external command's output when the cause
    was a process failure, otherwise the cause's message.
    """

    def __init__(self, stage: str, cause: BaseException, summary: str = "") -> None:
        self.cause = cause
        self.summary = summary or str(cause)
        super().__init__(f"stage failed: {self.summary}", stage=stage)


class CommandError(RuntimeError):
    """An external process exited non-zero or timed out."""

    def __init__(self, command: list[str], returncode: int | None, output: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        status = "timed out" if returncode is None else f"exited with code {returncode}"
        super().__init__(f"`{' '.join(command)}` {status}")

    def summary(self, max_lines: int = 20) -> str:
        lines = [ln for ln in self.output.splitlines() if ln.strip()]
        tail = "\n".join(lines[-max_lines:])
        if tail:
            return f"{self}\n{tail}"
        return str(self)
