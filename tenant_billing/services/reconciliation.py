"""Periodic reconciliation sweep.

Three independent phases, each safe to re-run:

1. pending invoices past their due date become ``overdue``;
2. ACTIVE/TRIAL subscriptions past ``current_period_end`` move to GRACE;
3. GRACE subscriptions past ``grace_period_end`` move to READ_ONLY.

Each subscription is its own transaction. A failing unit is logged and
recorded in the result; the remaining units still run.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime

from tenant_billing.metrics import SWEEP_RUNS
from tenant_billing.services.billing_engine import BillingEngine

logger = logging.getLogger(__name__)


@dataclass
class SweepError:
    phase: str
    error: str
    subscription_id: str | None = None


@dataclass
class SweepResult:
    overdue_invoices: int = 0
    to_grace: int = 0
    to_read_only: int = 0
    errors: list[SweepError] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class ReconciliationSweep:
    def __init__(self, engine: BillingEngine) -> None:
        self.engine = engine

    def run(self) -> SweepResult:
        now = self.engine.now()
        result = SweepResult()
        logger.info("Starting reconciliation sweep at %s", now.isoformat())

        try:
            result.overdue_invoices = self.engine.mark_overdue_invoices(now)
        except Exception as exc:
            logger.exception("Failed to mark overdue invoices")
            result.errors.append(SweepError(phase="overdue_invoices", error=str(exc)))

        result.to_grace = self._advance(
            "to_grace",
            self.engine.find_lapsed_subscriptions,
            self.engine.transition_to_grace,
            now,
            result,
        )
        result.to_read_only = self._advance(
            "to_read_only",
            self.engine.find_expired_grace,
            self.engine.transition_to_read_only,
            now,
            result,
        )

        SWEEP_RUNS.labels("errors" if result.errors else "ok").inc()
        logger.info(
            "Reconciliation sweep complete: overdue=%s to_grace=%s "
            "to_read_only=%s errors=%s",
            result.overdue_invoices,
            result.to_grace,
            result.to_read_only,
            len(result.errors),
        )
        return result

    @staticmethod
    def _advance(
        phase: str,
        find: Callable[[datetime], list[str]],
        transition: Callable[[str, datetime], bool],
        now: datetime,
        result: SweepResult,
    ) -> int:
        try:
            candidates = find(now)
        except Exception as exc:
            logger.exception("Failed to load candidates for %s", phase)
            result.errors.append(SweepError(phase=phase, error=str(exc)))
            return 0

        applied = 0
        for subscription_id in candidates:
            try:
                if transition(subscription_id, now):
                    applied += 1
            except Exception as exc:
                logger.exception(
                    "Failed to apply %s to subscription %s",
                    phase,
                    subscription_id,
                    extra={"subscription_id": subscription_id},
                )
                result.errors.append(
                    SweepError(
                        phase=phase, error=str(exc), subscription_id=subscription_id
                    )
                )
        return applied


def run_reconciliation_sweep(engine: BillingEngine) -> SweepResult:
    return ReconciliationSweep(engine).run()
