"""Ordered eligibility rules deciding whether a job is worth executing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from proofrail_agent.config import PriceFailurePolicy
from proofrail_agent.ledger.models import Job

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MARGIN_BLOCKS = 5


class RejectReason(str, Enum):
    FEE_TOO_LOW = "fee-too-low"
    EXPIRING_SOON = "expiring-soon"
    PRICE_INVALID = "price-invalid"
    PRICE_CHECK_FAILED = "price-check-failed"


@dataclass(frozen=True, slots=True)
class EligibilityDecision:
    """Accept, or Reject with a reason and a human-readable detail."""

    accepted: bool
    reason: RejectReason | None = None
    detail: str = ""

    @classmethod
    def accept(cls, detail: str = "") -> EligibilityDecision:
        return cls(accepted=True, detail=detail)

    @classmethod
    def reject(cls, reason: RejectReason, detail: str) -> EligibilityDecision:
        return cls(accepted=False, reason=reason, detail=detail)


class PriceGate(Protocol):
    """External price check; raising means the check itself could not run."""

    def validate(self, job: Job) -> bool:
        """Return True when current prices permit executing ``job``."""


class EligibilityPolicy:
    """First failing rule wins:

    1. fee below ``min_fee_amount``;
    2. fewer than ``expiry_margin_blocks`` blocks before expiry;
    3. price gate (when configured) says no.

    A price gate error is resolved by ``failure_policy``: fail-open accepts,
    fail-closed rejects with ``price-check-failed``.
    """

    def __init__(
        self,
        *,
        min_fee_amount: int,
        expiry_margin_blocks: int = DEFAULT_EXPIRY_MARGIN_BLOCKS,
        price_gate: PriceGate | None = None,
        failure_policy: PriceFailurePolicy = PriceFailurePolicy.FAIL_OPEN,
    ) -> None:
        self.min_fee_amount = min_fee_amount
        self.expiry_margin_blocks = expiry_margin_blocks
        self.price_gate = price_gate
        self.failure_policy = failure_policy

    def evaluate(self, job: Job, current_height: int) -> EligibilityDecision:
        if job.agent_fee_amount < self.min_fee_amount:
            return EligibilityDecision.reject(
                RejectReason.FEE_TOO_LOW,
                f"fee {job.agent_fee_amount} < minimum {self.min_fee_amount}",
            )

        blocks_left = job.blocks_until_expiry(current_height)
        if blocks_left < self.expiry_margin_blocks:
            return EligibilityDecision.reject(
                RejectReason.EXPIRING_SOON,
                f"expires in {blocks_left} block(s), margin is {self.expiry_margin_blocks}",
            )

        if self.price_gate is not None:
            try:
                price_ok = self.price_gate.validate(job)
            except Exception as error:  # noqa: BLE001
                if self.failure_policy is PriceFailurePolicy.FAIL_CLOSED:
                    return EligibilityDecision.reject(
                        RejectReason.PRICE_CHECK_FAILED,
                        f"price gate error: {error}",
                    )
                logger.warning(
                    "Price gate error ignored (fail-open): %s",
                    error,
                    extra={"job_id": job.job_id},
                )
            else:
                if not price_ok:
                    return EligibilityDecision.reject(
                        RejectReason.PRICE_INVALID,
                        "price gate rejected current prices",
                    )

        return EligibilityDecision.accept(f"{blocks_left} block(s) until expiry")
