"""Validating decode of escrow read-only results into typed models."""

from __future__ import annotations

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
from proofrail_agent.ledger.models import Job, JobStatus

_REQUIRED_JOB_FIELDS = (
    "payer",
    "agent",
    "token-contract",
    "max-input-usdcx",
    "agent-fee-usdcx",
    "min-alex-out",
    "lock-period",
    "expiry-block",
    "created-at-block",
    "status",
    "fee-paid",
)


class JobDecodeError(ValueError):
    """Ledger value does not match the job record schema."""


def unwrap_response(value: ClarityValue, *, context: str) -> ClarityValue:
    """Return the ``ok`` payload of a response, or the value itself if not a response."""

    if isinstance(value, CResponse):
        if not value.ok:
            raise JobDecodeError(f"{context} returned err: {value.value!r}")
        return value.value
    return value


def decode_uint(value: ClarityValue, *, context: str) -> int:
    """Decode a (possibly response-wrapped) uint."""

    inner = unwrap_response(value, context=context)
    if not isinstance(inner, CUInt):
        raise JobDecodeError(f"{context} must be a uint, got {type(inner).__name__}")
    return inner.value


def decode_job(job_id: int, value: ClarityValue) -> Job | None:
    """Decode a ``get-job`` result: ``(optional (tuple ...))``.

    Returns ``None`` when the ledger reports no job for the id. Any other
    shape raises :class:`JobDecodeError`; partially-typed records are never
    returned.
    """

    inner = unwrap_response(value, context=f"get-job({job_id})")
    if isinstance(inner, COptional):
        if inner.value is None:
            return None
        inner = inner.value
    if not isinstance(inner, CTuple):
        raise JobDecodeError(f"get-job({job_id}) must be a tuple, got {type(inner).__name__}")

    fields = inner.fields
    missing = [key for key in _REQUIRED_JOB_FIELDS if key not in fields]
    if missing:
        raise JobDecodeError(f"job {job_id} missing required fields: {', '.join(missing)}")

    status_code = _uint(fields, "status", job_id)
    try:
        status = JobStatus.from_code(status_code)
    except ValueError as error:
        raise JobDecodeError(f"job {job_id}: {error}") from error

    return Job(
        job_id=job_id,
        payer=_principal(fields, "payer", job_id),
        agent=_principal(fields, "agent", job_id),
        input_token=_principal(fields, "token-contract", job_id),
        max_input_amount=_uint(fields, "max-input-usdcx", job_id),
        agent_fee_amount=_uint(fields, "agent-fee-usdcx", job_id),
        min_output_amount=_uint(fields, "min-alex-out", job_id),
        lock_period=_uint(fields, "lock-period", job_id),
        expiry_block=_uint(fields, "expiry-block", job_id),
        created_at_block=_uint(fields, "created-at-block", job_id),
        status=status,
        fee_paid=_bool(fields, "fee-paid", job_id),
        receipt_hash=_optional_buffer(fields, "receipt-hash", job_id),
        executed_at_block=_optional_uint(fields, "executed-at-block", job_id),
    )


def _uint(fields: dict[str, ClarityValue], key: str, job_id: int) -> int:
    value = fields[key]
    if not isinstance(value, CUInt):
        raise JobDecodeError(f"job {job_id}.{key} must be a uint, got {type(value).__name__}")
    return value.value


def _principal(fields: dict[str, ClarityValue], key: str, job_id: int) -> str:
    value = fields[key]
    if not isinstance(value, CPrincipal):
        raise JobDecodeError(
            f"job {job_id}.{key} must be a principal, got {type(value).__name__}",
        )
    return str(value)


def _bool(fields: dict[str, ClarityValue], key: str, job_id: int) -> bool:
    value = fields[key]
    if not isinstance(value, CBool):
        raise JobDecodeError(f"job {job_id}.{key} must be a bool, got {type(value).__name__}")
    return value.value


def _optional_buffer(fields: dict[str, ClarityValue], key: str, job_id: int) -> bytes | None:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, COptional):
        raise JobDecodeError(f"job {job_id}.{key} must be optional, got {type(value).__name__}")
    if value.value is None:
        return None
    if not isinstance(value.value, CBuffer):
        raise JobDecodeError(f"job {job_id}.{key} must wrap a buffer")
    return value.value.value


def _optional_uint(fields: dict[str, ClarityValue], key: str, job_id: int) -> int | None:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, COptional):
        raise JobDecodeError(f"job {job_id}.{key} must be optional, got {type(value).__name__}")
    if value.value is None:
        return None
    if not isinstance(value.value, CUInt):
        raise JobDecodeError(f"job {job_id}.{key} must wrap a uint")
    return value.value.value
