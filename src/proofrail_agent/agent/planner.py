"""Execution parameters and contract calls for accepted jobs."""

from __future__ import annotations

from dataclasses import dataclass

from proofrail_agent.ledger.clarity import CUInt
from proofrail_agent.ledger.models import ContractCall, ContractId, Job

SWAP_FACTOR = 100_000_000
EXECUTE_FUNCTION = "execute-swap-stake-job"
# Escrow entry point. Some clients use "claim-agent-fee"; PROOFRAIL_CLAIM_FEE_FUNCTION overrides it.
CLAIM_FEE_FUNCTION = "claim-fee"


@dataclass(frozen=True, slots=True)
class ExecutionContracts:
    """Contracts wired into every execution."""

    router: ContractId
    escrow: ContractId
    input_token: ContractId
    output_token: ContractId
    swap_helper: ContractId
    staking: ContractId


@dataclass(frozen=True, slots=True)
class ExecutionParams:
    job_id: int
    swap_amount: int
    min_output_amount: int
    factor: int
    contracts: ExecutionContracts


class ExecutionPlanner:
    """Spends half of ``max_input_amount`` to leave room for price movement
    between planning and inclusion."""

    def __init__(
        self,
        *,
        contracts: ExecutionContracts,
        factor: int = SWAP_FACTOR,
        claim_fee_function: str = CLAIM_FEE_FUNCTION,
    ) -> None:
        self.contracts = contracts
        self.factor = factor
        self.claim_fee_function = claim_fee_function

    def plan(
        self,
        job: Job,
        *,
        swap_amount: int | None = None,
        factor: int | None = None,
    ) -> ExecutionParams:
        """Build execution parameters; operators may pin ``swap_amount`` and ``factor``."""

        if swap_amount is not None and not 0 < swap_amount <= job.max_input_amount:
            raise ValueError(
                f"swap amount must be in 1..{job.max_input_amount} for job {job.job_id}, "
                f"got {swap_amount}",
            )
        if factor is not None and factor <= 0:
            raise ValueError(f"factor must be > 0, got {factor}")
        return ExecutionParams(
            job_id=job.job_id,
            swap_amount=job.max_input_amount // 2 if swap_amount is None else swap_amount,
            min_output_amount=job.min_output_amount,
            factor=self.factor if factor is None else factor,
            contracts=self.contracts,
        )

    def execution_call(self, params: ExecutionParams) -> ContractCall:
        contracts = params.contracts
        return ContractCall(
            contract=contracts.router,
            function_name=EXECUTE_FUNCTION,
            function_args=(
                CUInt(params.job_id),
                contracts.input_token.principal(),
                contracts.output_token.principal(),
                contracts.swap_helper.principal(),
                contracts.staking.principal(),
                CUInt(params.factor),
                CUInt(params.swap_amount),
            ),
        )

    def claim_fee_call(self, job_id: int) -> ContractCall:
        return ContractCall(
            contract=self.contracts.escrow,
            function_name=self.claim_fee_function,
            function_args=(CUInt(job_id), self.contracts.input_token.principal()),
        )
