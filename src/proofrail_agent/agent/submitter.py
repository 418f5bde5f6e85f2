"""Bounded-retry transaction broadcast."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from proofrail_agent.agent.cancellation import CancellationToken
from proofrail_agent.ledger.base import TransactionPort
from proofrail_agent.ledger.models import BroadcastError, ContractCall

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1_000


class BroadcastExhausted(RuntimeError):  # noqa: N818
    """Every broadcast attempt failed; ``last_error`` is the final cause."""

    def __init__(self, call: ContractCall, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"Failed to broadcast {call.describe()} after {attempts} attempts: {last_error}",
        )
        self.call = call
        self.attempts = attempts
        self.last_error = last_error


@dataclass(slots=True)
class SubmissionAttempt:
    """State of one ``submit`` call across its attempts."""

    attempt: int = 0
    last_error: Exception | None = None
    delay_ms: int = 0


class Submitter:
    """Retries broadcast up to ``max_retries`` times.

    The wait after failed attempt ``k`` is ``k * base_delay_ms``. Node
    rejections and transport failures are retried alike; there is no
    wall-clock deadline beyond the attempt bound.
    """

    def __init__(
        self,
        *,
        port: TransactionPort,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        cancellation: CancellationToken | None = None,
    ) -> None:
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self.port = port
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.cancellation = cancellation or CancellationToken()

    def submit(self, call: ContractCall, *, job_id: int | None = None) -> str:
        state = SubmissionAttempt()
        while state.attempt < self.max_retries:
            state.attempt += 1
            try:
                txid = self.port.submit(call)
            except BroadcastError as error:
                state.last_error = error
                failure = error
            else:
                logger.info(
                    "Broadcast %s",
                    call.describe(),
                    extra={"job_id": job_id, "txid": txid, "attempt": state.attempt},
                )
                return txid

            if state.attempt >= self.max_retries:
                break
            state.delay_ms = self.backoff_ms(state.attempt)
            # Every failure shares this schedule; ``transient`` is reported, not acted on.
            logger.warning(
                "Broadcast attempt %d of %s failed, retrying in %dms: %s",
                state.attempt,
                call.describe(),
                state.delay_ms,
                failure,
                extra={
                    "job_id": job_id,
                    "attempt": state.attempt,
                    "delay_ms": state.delay_ms,
                    "transient": failure.transient,
                    "reason": failure.reason,
                },
            )
            self.cancellation.sleep(state.delay_ms / 1000)

        if state.last_error is None:  # pragma: no cover - loop always records an error
            raise RuntimeError("Broadcast loop exited without an attempt.")
        raise BroadcastExhausted(call, state.attempt, state.last_error)

    def backoff_ms(self, attempt: int) -> int:
        return attempt * self.base_delay_ms
