"""Saga executor for multi-step writes that cannot share one transaction.

Used by the best-effort one-by-one receipt creation: each receipt is created
in its own step, and a failure part-way through either leaves the completed
steps in place (``compensate=False``, the default for receipt batches) or
undoes them in reverse order (``compensate=True``).

Design:
- SagaStep: Individual write with its compensation action
- SagaExecutor: Runs steps in order, compensates on failure if asked to
- Compensation failures are logged and reported, never raised
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SagaStepStatus(StrEnum):
    """Status of a saga step."""

    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


class SagaStatus(StrEnum):
    """Overall status of a saga execution."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass
class SagaStepResult:
    """Result of executing (or compensating) a saga step."""

    step_name: str
    status: SagaStepStatus
    result: Any = None
    error: Exception | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SagaResult:
    """Result of executing a complete saga."""

    saga_id: str
    status: SagaStatus
    step_results: list[SagaStepResult] = field(default_factory=list)
    error: Exception | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_success(self) -> bool:
        """Check if every step completed."""
        return self.status == SagaStatus.COMPLETED

    @property
    def is_compensated(self) -> bool:
        """Check if the saga was rolled back."""
        return self.status == SagaStatus.COMPENSATED

    @property
    def completed_results(self) -> list[Any]:
        """Results of the forward steps that completed and were not compensated."""
        compensated = {
            r.step_name.removesuffix("_compensation")
            for r in self.step_results
            if r.status == SagaStepStatus.COMPENSATED
        }
        return [
            r.result
            for r in self.step_results
            if r.status == SagaStepStatus.COMPLETED and r.step_name not in compensated
        ]


class SagaStep(ABC, Generic[T]):
    """Abstract base class for a saga step."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def execute(self, context: dict[str, Any]) -> T:
        """Execute the forward action.

        Args:
            context: Shared context dictionary for passing data between steps.

        Returns:
            Result of the step execution.
        """

    @abstractmethod
    def compensate(self, context: dict[str, Any], result: T) -> None:
        """Undo the forward action after a later step failed."""


class FunctionStep(SagaStep[T]):
    """Saga step built from a pair of callables."""

    def __init__(
        self,
        name: str,
        execute_fn: Callable[[dict[str, Any]], T],
        compensate_fn: Callable[[dict[str, Any], T], None],
    ) -> None:
        super().__init__(name)
        self._execute_fn = execute_fn
        self._compensate_fn = compensate_fn

    def execute(self, context: dict[str, Any]) -> T:
        return self._execute_fn(context)

    def compensate(self, context: dict[str, Any], result: T) -> None:
        self._compensate_fn(context, result)


class SagaExecutor:
    """Runs saga steps in order.

    On a step failure the remaining steps are skipped. With ``compensate``
    set, completed steps are compensated in reverse order; otherwise they are
    left in place and the saga reports PARTIAL.
    """

    def __init__(self, saga_id: str, compensate: bool = True) -> None:
        self.saga_id = saga_id
        self.compensate = compensate
        self._steps: list[SagaStep[Any]] = []
        self._step_results: list[SagaStepResult] = []
        self._context: dict[str, Any] = {}

    def add_step(self, step: SagaStep[Any]) -> SagaExecutor:
        """Add a step to the saga.

        Returns:
            Self for chaining.
        """
        self._steps.append(step)
        return self

    def add_function_step(
        self,
        name: str,
        execute_fn: Callable[[dict[str, Any]], Any],
        compensate_fn: Callable[[dict[str, Any], Any], None],
    ) -> SagaExecutor:
        """Add a step built from an execute/compensate pair."""
        return self.add_step(FunctionStep(name, execute_fn, compensate_fn))

    def execute(self, initial_context: dict[str, Any] | None = None) -> SagaResult:
        """Execute the saga with all steps.

        Args:
            initial_context: Initial context data to pass to steps.

        Returns:
            SagaResult with overall status and per-step results.
        """
        self._context = initial_context or {}
        self._step_results = []

        started_at = datetime.now(UTC)
        completed_steps: list[tuple[SagaStep[Any], Any]] = []

        logger.info("Starting saga %s with %d steps", self.saga_id, len(self._steps))

        for step in self._steps:
            step_started = datetime.now(UTC)
            try:
                result = step.execute(self._context)
            except Exception as e:
                self._step_results.append(
                    SagaStepResult(
                        step_name=step.name,
                        status=SagaStepStatus.FAILED,
                        error=e,
                        started_at=step_started,
                        completed_at=datetime.now(UTC),
                    )
                )
                logger.warning("Saga %s step %s failed: %s", self.saga_id, step.name, e)

                if self.compensate:
                    status = self._compensate(completed_steps)
                else:
                    status = SagaStatus.PARTIAL

                return SagaResult(
                    saga_id=self.saga_id,
                    status=status,
                    step_results=self._step_results,
                    error=e,
                    started_at=started_at,
                    completed_at=datetime.now(UTC),
                )

            self._step_results.append(
                SagaStepResult(
                    step_name=step.name,
                    status=SagaStepStatus.COMPLETED,
                    result=result,
                    started_at=step_started,
                    completed_at=datetime.now(UTC),
                )
            )
            completed_steps.append((step, result))
            logger.debug("Step %s completed successfully", step.name)

        logger.info("Saga %s completed successfully", self.saga_id)
        return SagaResult(
            saga_id=self.saga_id,
            status=SagaStatus.COMPLETED,
            step_results=self._step_results,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )

    def _compensate(self, completed_steps: list[tuple[SagaStep[Any], Any]]) -> SagaStatus:
        """Compensate all completed steps in reverse order.

        Returns:
            COMPENSATED if all compensations succeeded, COMPENSATION_FAILED otherwise.
        """
        logger.info("Compensating %d completed steps", len(completed_steps))
        all_compensated = True

        for step, result in reversed(completed_steps):
            comp_result = SagaStepResult(
                step_name=f"{step.name}_compensation",
                status=SagaStepStatus.COMPENSATED,
                started_at=datetime.now(UTC),
            )

            try:
                step.compensate(self._context, result)
                logger.debug("Compensated step %s", step.name)
            except Exception as e:
                comp_result.status = SagaStepStatus.COMPENSATION_FAILED
                comp_result.error = e
                all_compensated = False
                logger.error("Compensation failed for step %s: %s", step.name, e)

            comp_result.completed_at = datetime.now(UTC)
            self._step_results.append(comp_result)

        return SagaStatus.COMPENSATED if all_compensated else SagaStatus.COMPENSATION_FAILED


class ReceiptCreationSaga(SagaExecutor):
    """Saga behind one-by-one receipt creation.

    One step per receipt request. Unlike the base executor it keeps the
    receipts already created when a later one fails, unless built with
    ``compensate=True``.
    """

    def __init__(self, saga_id: str, compensate: bool = False) -> None:
        super().__init__(saga_id, compensate=compensate)
