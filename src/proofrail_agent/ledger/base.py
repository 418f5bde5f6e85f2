"""Port interfaces consumed by the job loop."""

from __future__ import annotations

from typing import Protocol

from proofrail_agent.ledger.models import ContractCall, Job, TxStatus


class LedgerQueryPort(Protocol):
    """Read-only access to escrow state and chain height."""

    def get_next_job_id(self) -> int:
        """Return the next id the escrow contract will assign."""

    def get_job(self, job_id: int) -> Job | None:
        """Return the decoded job, or ``None`` when no job has this id."""

    def get_current_block_height(self) -> int:
        """Return the current chain tip height."""


class TransactionPort(Protocol):
    """Sign, broadcast, and poll transactions for the agent identity."""

    def submit(self, call: ContractCall) -> str:
        """Broadcast one attempt and return its txid, or raise ``BroadcastError``."""

    def get_status(self, txid: str) -> TxStatus:
        """Return the current status of a broadcast transaction."""
