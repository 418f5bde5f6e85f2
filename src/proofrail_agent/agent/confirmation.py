"""Block-height-bounded confirmation polling."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from proofrail_agent.agent.cancellation import CancellationToken
from proofrail_agent.ledger.base import LedgerQueryPort, TransactionPort
from proofrail_agent.ledger.models import LedgerQueryError, TxStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_WAIT_BLOCKS = 10
DEFAULT_POLL_INTERVAL_MS = 5_000


class ConfirmationError(RuntimeError):
    """Transaction did not reach ``success``."""

    def __init__(self, message: str, *, txid: str) -> None:
        super().__init__(message)
        self.txid = txid


class TransactionAborted(ConfirmationError):
    """Transaction landed but was aborted by the contract or a post-condition."""

    def __init__(self, *, txid: str, status: TxStatus) -> None:
        super().__init__(f"Transaction {txid} failed: {status.value}", txid=txid)
        self.status = status


class ConfirmationTimedOut(ConfirmationError):
    """Chain height passed the deadline before the transaction confirmed.

    The transaction may still confirm afterwards; callers must not assume it
    never will.
    """

    def __init__(self, *, txid: str, max_wait_blocks: int, deadline: int, height: int) -> None:
        super().__init__(
            f"Transaction {txid} not confirmed after {max_wait_blocks} blocks "
            f"(height {height} > deadline {deadline})",
            txid=txid,
        )
        self.deadline = deadline
        self.height = height


@dataclass(frozen=True, slots=True)
class Confirmed:
    txid: str
    height: int
    start_height: int
    polls: int


class ConfirmationWaiter:
    """Polls status until success, abort, or ``height > start + max_wait_blocks``."""

    def __init__(
        self,
        *,
        ledger: LedgerQueryPort,
        transactions: TransactionPort,
        max_wait_blocks: int = DEFAULT_MAX_WAIT_BLOCKS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.ledger = ledger
        self.transactions = transactions
        self.max_wait_blocks = max_wait_blocks
        self.poll_interval_ms = poll_interval_ms
        self.cancellation = cancellation or CancellationToken()

    def await_confirmation(self, txid: str, *, job_id: int | None = None) -> Confirmed:
        start_height = self.ledger.get_current_block_height()
        deadline = start_height + self.max_wait_blocks
        logger.info(
            "Waiting for confirmation (block %d to %d)",
            start_height,
            deadline,
            extra={"job_id": job_id, "txid": txid},
        )

        polls = 0
        while True:
            self.cancellation.raise_if_cancelled()
            height = self.ledger.get_current_block_height()
            if height > deadline:
                raise ConfirmationTimedOut(
                    txid=txid,
                    max_wait_blocks=self.max_wait_blocks,
                    deadline=deadline,
                    height=height,
                )

            polls += 1
            try:
                status = self.transactions.get_status(txid)
            except LedgerQueryError as error:
                logger.debug("Status not available yet: %s", error, extra={"txid": txid})
                status = TxStatus.PENDING

            if status is TxStatus.SUCCESS:
                logger.info(
                    "Transaction confirmed at block %d",
                    height,
                    extra={"job_id": job_id, "txid": txid, "height": height},
                )
                return Confirmed(txid=txid, height=height, start_height=start_height, polls=polls)
            if status.is_abort:
                raise TransactionAborted(txid=txid, status=status)

            self.cancellation.sleep(self.poll_interval_ms / 1000)
