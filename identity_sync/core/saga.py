"""Ordered (action, compensation) steps with unwind on failure.

Steps run in order against a shared context dict. When a step raises, the
compensations of the steps that already completed run in reverse order.
A failing compensation is logged and recorded but never replaces the
original error.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Context = Dict[str, Any]


@dataclass
class SagaStep:
    name: str
    action: Callable[[Context], Any]
    compensation: Optional[Callable[[Context], None]] = None


class SagaError(Exception):
    """A saga step failed; compensations have already been attempted.

    Attributes:
        saga: Saga name
        step: Name of the failing step
        cause: Exception raised by the failing step
        completed: Names of the steps that had completed before the failure
        compensation_errors: (step name, exception) for every compensation that failed
        context: The shared step context at the time of failure
    """

    def __init__(
        self,
        saga: str,
        step: str,
        cause: BaseException,
        completed: List[str],
        compensation_errors: List[Tuple[str, BaseException]],
        context: Optional[Context] = None,
    ):
        self.saga = saga
        self.step = step
        self.cause = cause
        self.completed = completed
        self.compensation_errors = compensation_errors
        self.context = context if context is not None else {}
        super().__init__(f"{saga}: step '{step}' failed: {cause}")

    @property
    def compensated(self) -> bool:
        """True when every compensation ran cleanly."""
        return not self.compensation_errors


@dataclass
class Saga:
    """Builder and executor for a list of saga steps.

    Usage:
        saga = Saga("provision alice")
        saga.step("create identity", create, compensation=delete)
        saga.step("persist account", persist)
        context = saga.execute({"username": "alice"})
    """
    name: str
    steps: List[SagaStep] = field(default_factory=list)

    def step(
        self,
        name: str,
        action: Callable[[Context], Any],
        compensation: Optional[Callable[[Context], None]] = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation))
        return self

    def execute(self, context: Optional[Context] = None) -> Context:
        """Run every step; results are stored in the context under the step name.

        Raises:
            SagaError: If any step raises
        """
        context = context if context is not None else {}
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                context[step.name] = step.action(context)
            except Exception as exc:
                logger.error("%s: step '%s' failed: %s", self.name, step.name, exc)
                errors = self._unwind(completed, context, exc)
                raise SagaError(
                    self.name, step.name, exc, [s.name for s in completed], errors, context
                ) from exc
            completed.append(step)
        return context

    def _unwind(
        self,
        completed: List[SagaStep],
        context: Context,
        cause: BaseException,
    ) -> List[Tuple[str, BaseException]]:
        errors: List[Tuple[str, BaseException]] = []
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(context)
                logger.info("%s: compensated step '%s'", self.name, step.name)
            except Exception as comp_exc:
                logger.error(
                    "%s: compensation for step '%s' failed: %s (original error: %s)",
                    self.name, step.name, comp_exc, cause,
                )
                errors.append((step.name, comp_exc))
        return errors
