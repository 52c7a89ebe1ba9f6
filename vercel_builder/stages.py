"""Sequential stage runner.

A stage names its working directory and the stages that must have completed
before it runs. The runner executes stages strictly in list order, skips
those whose `when` predicate is false, and stops at the first failure.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, TypeVar

from vercel_builder.errors import BuildError, CommandError, StageFailure, StageOrderError
from vercel_builder.logging import get_logger, stage_context

log = get_logger(__name__)

S = TypeVar("S")

DASH = " ----------------- "


@dataclass(frozen=True)
class Stage(Generic[S]):
    name: str
    run: Callable[[S, Path], None]
    cwd: Callable[[S], Path]
    requires: tuple[str, ...] = ()
    when: Callable[[S], bool] | None = None


@dataclass
class StageReport:
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    timings_ms: dict[str, int] = field(default_factory=dict)


def _summarize(exc: BaseException) -> str:
    if isinstance(exc, CommandError):
        return exc.summary()
    return f"{type(exc).__name__}: {exc}"


class StageRunner(Generic[S]):
    def __init__(self, stages: Sequence[Stage[S]]) -> None:
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names: {names}")
        self.stages = list(stages)

    def run(self, state: S) -> StageReport:
        report = StageReport()
        done: set[str] = set()
        for stage in self.stages:
            if stage.when is not None and not stage.when(state):
                log.info("Skipping %s", stage.name, extra={"stage": stage.name})
                report.skipped.append(stage.name)
                continue

            missing = [r for r in stage.requires if r not in done]
            if missing:
                raise StageOrderError(
                    f"requires {', '.join(missing)} to have completed", stage=stage.name
                )

            log.info("%s%s%s", DASH, stage.name, DASH, extra={"stage": stage.name})
            started = time.perf_counter()
            try:
                with stage_context(stage.name):
                    stage.run(state, stage.cwd(state))
            except BuildError as exc:
                if exc.stage is None:
                    exc.stage = stage.name
                log.error("%s", exc, extra={"stage": stage.name})
                raise
            except Exception as exc:
                failure = StageFailure(stage.name, exc, _summarize(exc))
                log.error("%s", failure, extra={"stage": stage.name})
                raise failure from exc

            elapsed = int((time.perf_counter() - started) * 1000)
            report.timings_ms[stage.name] = elapsed
            report.completed.append(stage.name)
            done.add(stage.name)
            log.info(
                "%s took: %dms",
                stage.name,
                elapsed,
                extra={"stage": stage.name, "elapsed_ms": elapsed},
            )
        return report
