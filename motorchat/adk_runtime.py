from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger("motorchat.runtime")

C = TypeVar("C")


@dataclass
class AdkStep(Generic[C]):
    """One named stage of turn preparation, with optional skip and always-run flags."""
    name: str
    fn: Callable[[C], None]
    skip_if: Optional[Callable[[C], bool]] = None
    always_run: bool = False


class AdkAgent(Generic[C]):
    """Lightweight ADK-style step runner for deterministic pipelines.

    A step may stop the pipeline by setting ``halted = True`` on the context;
    remaining steps are skipped except those marked ``always_run``.
    """

    def __init__(self, steps: List[AdkStep[C]], name: str = "pipeline") -> None:
        """Purpose: Fix the order of the turn-preparation stages.
        Inputs/Outputs: Input is a list of AdkStep and a label for logs; no return value.
        Side Effects / State: Keeps the steps; nothing runs until run().
        Dependencies: AdkStep only.
        Failure Modes: Raises ValueError on duplicate step names.
        If Removed: Turn preparation has no runner and no step trace.
        Testing Notes: step_names reports stages in construction order.
        """
        # Names label the step trace, so they must be unique.
        names = [step.name for step in steps]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate step names in {name}: {names}")
        self._steps = steps
        self._name = name

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: C) -> List[str]:
        """Purpose: Execute steps in order with skip/halt/always-run rules.
        Inputs/Outputs: Input is a mutable context object; returns executed step names.
        Side Effects / State: Steps fill in the turn context (category, blocks, payload).
        Dependencies: Depends on AdkStep.fn, AdkStep.skip_if and context.halted.
        Failure Modes: A raising step aborts the run; callers answer with the fallback reply.
        If Removed: The chat pipeline cannot prepare a turn.
        Testing Notes: Verify skip_if, halted and always_run logic with simple steps.
        """
        # Iterate steps and honor halt/skip_if/always_run guards.
        executed: List[str] = []
        for step in self._steps:
            halted = bool(getattr(context, "halted", False))
            if not step.always_run:
                if halted or (step.skip_if and step.skip_if(context)):
                    logger.debug("%s step=%s status=skipped", self._name, step.name)
                    continue
            started = time.perf_counter()
            step.fn(context)
            executed.append(step.name)
            logger.debug(
                "%s step=%s status=done elapsed_ms=%.1f",
                self._name,
                step.name,
                (time.perf_counter() - started) * 1000,
            )
        return executed
