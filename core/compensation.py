"""
Compensating-action stack for multi-step operations.

Each completed step pushes an undo callable. If a later step raises, the
stack is unwound in reverse order and the original error is re-raised.
A failing undo is logged and skipped so the remaining undos still run.

Usage:
    with CompensationStack("create invoice") as undo:
        inventory.reserve(items)
        undo.push("release stock", lambda: inventory.release(items))

        discounts.apply_usage(discount.id)
        undo.push("revert discount usage", lambda: discounts.revert_usage(discount.id))

        undo.commit()
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class CompensationStack:
    """Undo closures for one operation, unwound in reverse on failure."""

    def __init__(self, operation: str):
        self.operation = operation
        self._steps: list[tuple[str, Callable[[], object]]] = []
        self._committed = False
        self.compensated: list[str] = []
        self.failed: list[str] = []

    def push(self, description: str, undo: Callable[[], object]) -> None:
        """Register the undo for a step that just completed."""
        self._steps.append((description, undo))

    def commit(self) -> None:
        """Mark the operation successful; nothing will be unwound."""
        self._committed = True
        self._steps.clear()

    def unwind(self) -> None:
        """Run every registered undo, most recent first."""
        while self._steps:
            description, undo = self._steps.pop()
            try:
                undo()
                self.compensated.append(description)
            except Exception:
                self.failed.append(description)
                logger.exception(f"Compensation '{description}' failed while rolling back {self.operation}")

    def __enter__(self) -> "CompensationStack":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and not self._committed:
            if self._steps:
                logger.warning(
                    f"Rolling back {self.operation} after {exc_type.__name__}: "
                    f"{len(self._steps)} step(s) to undo"
                )
            self.unwind()
        return False
