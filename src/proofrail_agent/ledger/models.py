"""Domain models for escrow jobs, contract calls, and transaction state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from proofrail_agent.ledger.clarity import ClarityValue, CPrincipal


class JobStatus(str, Enum):
    """Ledger-owned job lifecycle states. Monotonic: never returns to OPEN."""

    OPEN = "open"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def from_code(cls, code: int) -> JobStatus:
        """Map the escrow contract's uint status code."""

        try:
            return _STATUS_BY_CODE[code]
        except KeyError as error:
            raise ValueError(f"Unknown job status code: {code}") from error


_STATUS_BY_CODE = {
    0: JobStatus.OPEN,
    1: JobStatus.EXECUTED,
    2: JobStatus.CANCELLED,
    3: JobStatus.EXPIRED,
}


class TxStatus(str, Enum):
    """Transaction states reported by the node API."""

    PENDING = "pending"
    SUCCESS = "success"
    ABORT_BY_RESPONSE = "abort_by_response"
    ABORT_BY_POST_CONDITION = "abort_by_post_condition"
    DROPPED = "dropped"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> TxStatus:
        if value is None:
            return cls.UNKNOWN
        if value.startswith("dropped_"):
            return cls.DROPPED
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_abort(self) -> bool:
        return self in (TxStatus.ABORT_BY_RESPONSE, TxStatus.ABORT_BY_POST_CONDITION)


@dataclass(frozen=True, slots=True)
class Job:
    """Typed view of one escrow job record."""

    job_id: int
    payer: str
    agent: str
    input_token: str
    max_input_amount: int
    agent_fee_amount: int
    min_output_amount: int
    lock_period: int
    expiry_block: int
    created_at_block: int
    status: JobStatus
    fee_paid: bool
    receipt_hash: bytes | None = None
    executed_at_block: int | None = None

    def blocks_until_expiry(self, current_height: int) -> int:
        return self.expiry_block - current_height

    @property
    def has_unclaimed_fee(self) -> bool:
        return self.status is JobStatus.EXECUTED and not self.fee_paid


@dataclass(frozen=True, slots=True)
class ContractId:
    """Fully qualified contract identity ``<deployer>.<contract-name>``."""

    address: str
    name: str

    def __str__(self) -> str:
        return f"{self.address}.{self.name}"

    @classmethod
    def parse(cls, value: str) -> ContractId:
        parts = value.strip().split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:  # noqa: PLR2004
            raise ValueError(f"Invalid contract principal: {value!r}")
        principal = CPrincipal.parse(value)
        return cls(address=principal.address, name=parts[1])

    def principal(self) -> CPrincipal:
        return CPrincipal(self.address, contract_name=self.name)


@dataclass(frozen=True, slots=True)
class ContractCall:
    """Unsigned public-function call to be signed and broadcast."""

    contract: ContractId
    function_name: str
    function_args: tuple[ClarityValue, ...] = field(default_factory=tuple)

    def describe(self) -> str:
        return f"{self.contract}::{self.function_name}"


class LedgerQueryError(RuntimeError):
    """Read-only query failed (network, HTTP, or node-reported error)."""


class BroadcastError(RuntimeError):
    """One broadcast attempt failed, either in transport or by node rejection."""

    def __init__(self, message: str, *, transient: bool, reason: str | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.reason = reason
