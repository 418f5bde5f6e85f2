from __future__ import annotations

import allure
import pytest
from conftest import DEPLOYER, build_job

from proofrail_agent.agent.planner import (
    CLAIM_FEE_FUNCTION,
    EXECUTE_FUNCTION,
    SWAP_FACTOR,
    ExecutionContracts,
    ExecutionPlanner,
)
from proofrail_agent.ledger.clarity import CPrincipal, CUInt, to_hex
from proofrail_agent.ledger.models import ContractId

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Execution Planning"),
]

CONTRACTS = ExecutionContracts(
    router=ContractId(DEPLOYER, "job-router"),
    escrow=ContractId(DEPLOYER, "job-escrow"),
    input_token=ContractId(DEPLOYER, "mock-usdcx"),
    output_token=ContractId(DEPLOYER, "mock-alex"),
    swap_helper=ContractId(DEPLOYER, "mock-swap-helper"),
    staking=ContractId(DEPLOYER, "mock-alex-staking-v2"),
)


def test_plan_spends_half_of_max_input_rounded_down() -> None:
    planner = ExecutionPlanner(contracts=CONTRACTS)

    params = planner.plan(build_job(job_id=5, max_input_amount=1_000_001, min_output_amount=77))

    assert params.job_id == 5
    assert params.swap_amount == 500_000
    assert params.min_output_amount == 77
    assert params.factor == SWAP_FACTOR


def test_execution_call_targets_router_with_ordered_arguments() -> None:
    planner = ExecutionPlanner(contracts=CONTRACTS)

    call = planner.execution_call(planner.plan(build_job(job_id=5, max_input_amount=400)))

    assert call.contract == CONTRACTS.router
    assert call.function_name == EXECUTE_FUNCTION
    assert call.function_args == (
        CUInt(5),
        CPrincipal(DEPLOYER, contract_name="mock-usdcx"),
        CPrincipal(DEPLOYER, contract_name="mock-alex"),
        CPrincipal(DEPLOYER, contract_name="mock-swap-helper"),
        CPrincipal(DEPLOYER, contract_name="mock-alex-staking-v2"),
        CUInt(SWAP_FACTOR),
        CUInt(200),
    )
    assert call.describe() == f"{DEPLOYER}.job-router::{EXECUTE_FUNCTION}"


def test_claim_fee_call_targets_escrow_with_input_token() -> None:
    call = ExecutionPlanner(contracts=CONTRACTS).claim_fee_call(9)

    assert call.contract == CONTRACTS.escrow
    assert call.function_name == CLAIM_FEE_FUNCTION == "claim-fee"
    assert [to_hex(arg) for arg in call.function_args] == [
        to_hex(CUInt(9)),
        to_hex(CPrincipal(DEPLOYER, contract_name="mock-usdcx")),
    ]


def test_claim_fee_function_name_can_be_overridden() -> None:
    planner = ExecutionPlanner(contracts=CONTRACTS, claim_fee_function="claim-agent-fee")

    assert planner.claim_fee_call(9).function_name == "claim-agent-fee"


def test_operator_overrides_replace_swap_amount_and_factor() -> None:
    planner = ExecutionPlanner(contracts=CONTRACTS)

    params = planner.plan(build_job(max_input_amount=1_000), swap_amount=1_000, factor=7)

    assert params.swap_amount == 1_000
    assert params.factor == 7


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"swap_amount": 1_001}, "swap amount must be in 1..1000"),
        ({"swap_amount": 0}, "swap amount must be in 1..1000"),
        ({"factor": 0}, "factor must be > 0"),
    ],
)
def test_operator_overrides_are_bounded(overrides: dict, message: str) -> None:
    planner = ExecutionPlanner(contracts=CONTRACTS)

    with pytest.raises(ValueError, match=message):
        planner.plan(build_job(max_input_amount=1_000), **overrides)
