"""
Checkout Module - Compensation Ledger
=======================================
Ordered record of completed reservation steps, each paired with the action
that undoes it. On failure the ledger is unwound in reverse order of
acquisition. Stands in for a single ACID transaction across the promo
store, the credit store and the payment processor.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Tuple

logger = logging.getLogger("plateful.checkout")


@dataclass
class CompletedStep:
    name: str
    compensate: Callable[[], None]
    detail: str = ""


@dataclass
class UnwindReport:
    run: int = 0
    failed: int = 0
    failed_steps: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.failed == 0


class CompensationLedger:

    def __init__(self):
        self._steps: List[CompletedStep] = []
        self.committed = False

    def record(self, name: str, compensate: Callable[[], None], detail: str = "") -> None:
        """Call right after a forward step succeeds."""
        self._steps.append(CompletedStep(name, compensate, detail))

    @property
    def steps(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self._steps)

    def release(self, name: str) -> bool:
        """
        Undo one recorded step ahead of time and forget it. The step stays
        recorded if its compensation raises.
        """
        for idx, step in enumerate(self._steps):
            if step.name == name:
                step.compensate()
                del self._steps[idx]
                logger.info(f"released step={step.name} {step.detail}".rstrip())
                return True
        return False

    def commit(self) -> None:
        """Forward path finished; nothing to undo any more."""
        self.committed = True
        self._steps.clear()

    def unwind(self) -> UnwindReport:
        """
        Run compensations last-in first-out. A failing compensation is logged
        and counted; the remaining ones still run.
        """
        report = UnwindReport()
        while self._steps:
            step = self._steps.pop()
            try:
                step.compensate()
                report.run += 1
                logger.info(f"rollback step={step.name} {step.detail}".rstrip())
            except Exception:
                report.failed += 1
                report.failed_steps.append(step.name)
                logger.exception(f"rollback_failed step={step.name} {step.detail}".rstrip())
        return report
