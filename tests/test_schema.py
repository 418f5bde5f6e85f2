from __future__ import annotations

import allure
import pytest

from proofrail_agent.ledger.clarity import (
    CBool,
    CBuffer,
    ClarityValue,
    COptional,
    CPrincipal,
    CResponse,
    CTuple,
    CUInt,
)
from proofrail_agent.ledger.models import JobStatus
from proofrail_agent.ledger.schema import JobDecodeError, decode_job, decode_uint

pytestmark = [
    allure.epic("Ledger Access"),
    allure.feature("Job Record Decoding"),
]

DEPLOYER = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
AGENT = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"
PAYER = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"


def _job_fields(**overrides: ClarityValue) -> dict[str, ClarityValue]:
    fields: dict[str, ClarityValue] = {
        "payer": CPrincipal(PAYER),
        "agent": CPrincipal(AGENT),
        "token-contract": CPrincipal(DEPLOYER, contract_name="mock-usdcx"),
        "max-input-usdcx": CUInt(1_000_000),
        "agent-fee-usdcx": CUInt(50_000),
        "min-alex-out": CUInt(900),
        "lock-period": CUInt(12),
        "expiry-block": CUInt(250),
        "created-at-block": CUInt(120),
        "status": CUInt(0),
        "fee-paid": CBool(False),
        "receipt-hash": COptional(None),
        "executed-at-block": COptional(None),
    }
    fields.update(overrides)
    return fields


def test_decode_job_maps_every_field() -> None:
    job = decode_job(7, COptional(CTuple(_job_fields())))

    assert job is not None
    assert job.job_id == 7
    assert job.payer == PAYER
    assert job.agent == AGENT
    assert job.input_token == f"{DEPLOYER}.mock-usdcx"
    assert job.max_input_amount == 1_000_000
    assert job.agent_fee_amount == 50_000
    assert job.min_output_amount == 900
    assert job.lock_period == 12
    assert job.expiry_block == 250
    assert job.created_at_block == 120
    assert job.status is JobStatus.OPEN
    assert job.fee_paid is False
    assert job.receipt_hash is None
    assert job.executed_at_block is None


def test_decode_job_reads_execution_outcome_fields() -> None:
    fields = _job_fields(
        **{
            "status": CUInt(1),
            "fee-paid": CBool(True),
            "receipt-hash": COptional(CBuffer(b"\x11" * 32)),
            "executed-at-block": COptional(CUInt(130)),
        },
    )

    job = decode_job(3, COptional(CTuple(fields)))

    assert job is not None
    assert job.status is JobStatus.EXECUTED
    assert job.fee_paid is True
    assert job.receipt_hash == b"\x11" * 32
    assert job.executed_at_block == 130
    assert job.has_unclaimed_fee is False


def test_decode_job_returns_none_for_missing_job() -> None:
    assert decode_job(99, COptional(None)) is None


def test_decode_job_rejects_missing_required_field() -> None:
    fields = _job_fields()
    del fields["agent-fee-usdcx"]

    with pytest.raises(JobDecodeError, match="agent-fee-usdcx"):
        decode_job(1, COptional(CTuple(fields)))


def test_decode_job_rejects_mistyped_field() -> None:
    fields = _job_fields(**{"expiry-block": CBool(True)})

    with pytest.raises(JobDecodeError, match="expiry-block must be a uint"):
        decode_job(1, COptional(CTuple(fields)))


def test_decode_job_rejects_unknown_status_code() -> None:
    with pytest.raises(JobDecodeError, match="Unknown job status code: 9"):
        decode_job(1, COptional(CTuple(_job_fields(status=CUInt(9)))))


def test_decode_job_rejects_error_response() -> None:
    with pytest.raises(JobDecodeError, match="returned err"):
        decode_job(1, CResponse(ok=False, value=CUInt(404)))


def test_decode_uint_unwraps_ok_response() -> None:
    assert decode_uint(CResponse(ok=True, value=CUInt(42)), context="get-next-job-id") == 42
    with pytest.raises(JobDecodeError, match="must be a uint"):
        decode_uint(CBool(True), context="get-next-job-id")
