"""Ledger access: Clarity codec, escrow job schema, and node API adapters."""

from proofrail_agent.ledger.base import LedgerQueryPort, TransactionPort
from proofrail_agent.ledger.models import (
    BroadcastError,
    ContractCall,
    ContractId,
    Job,
    JobStatus,
    LedgerQueryError,
    TxStatus,
)
from proofrail_agent.ledger.schema import JobDecodeError, decode_job
from proofrail_agent.ledger.stacks_api import StacksApiClient

__all__ = [
    "BroadcastError",
    "ContractCall",
    "ContractId",
    "Job",
    "JobDecodeError",
    "JobStatus",
    "LedgerQueryError",
    "LedgerQueryPort",
    "StacksApiClient",
    "TransactionPort",
    "TxStatus",
    "decode_job",
]
