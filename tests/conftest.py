"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import replace

import pytest

from proofrail_agent.agent.cancellation import CancellationToken, OperationCancelled
from proofrail_agent.ledger.models import ContractCall, Job, JobStatus, TxStatus

DEPLOYER = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
AGENT = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"
PAYER = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"


class FakeLedger:
    """In-memory escrow reads; ``heights`` are returned in order, the last one repeats."""

    def __init__(self, *, jobs: list[Job] | None = None, heights: list[int] | None = None) -> None:
        self.jobs: dict[int, Job] = {job.job_id: job for job in jobs or []}
        self.heights = list(heights or [100])
        self.next_job_id: int | None = None
        self.next_job_id_error: Exception | None = None
        self.job_errors: dict[int, Exception] = {}
        self.height_calls = 0
        self.fetched: list[int] = []

    def get_next_job_id(self) -> int:
        if self.next_job_id_error is not None:
            raise self.next_job_id_error
        if self.next_job_id is not None:
            return self.next_job_id
        return max(self.jobs) + 1 if self.jobs else 0

    def get_job(self, job_id: int) -> Job | None:
        self.fetched.append(job_id)
        if job_id in self.job_errors:
            raise self.job_errors[job_id]
        return self.jobs.get(job_id)

    def get_current_block_height(self) -> int:
        self.height_calls += 1
        if len(self.heights) > 1:
            return self.heights.pop(0)
        return self.heights[0]


class FakeTransactions:
    """Records submissions; scripted broadcast failures and per-txid statuses."""

    def __init__(self) -> None:
        self.submitted: list[ContractCall] = []
        self.attempts = 0
        self.submit_errors: list[Exception] = []
        self.statuses: dict[str, list[TxStatus | Exception]] = {}
        self.default_status = TxStatus.SUCCESS
        self.status_calls: list[str] = []
        self.on_submit: Callable[[ContractCall], None] | None = None

    def submit(self, call: ContractCall) -> str:
        self.attempts += 1
        if self.on_submit is not None:
            self.on_submit(call)
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append(call)
        return txid_for(len(self.submitted))

    def get_status(self, txid: str) -> TxStatus:
        self.status_calls.append(txid)
        script = self.statuses.get(txid)
        if not script:
            return self.default_status
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def function_names(self) -> list[str]:
        return [call.function_name for call in self.submitted]


class RecordingToken(CancellationToken):
    """Records requested sleeps instead of waiting; optionally cancels on the Nth sleep."""

    def __init__(self, *, cancel_on_sleep: int | None = None) -> None:
        super().__init__()
        self.sleeps: list[float] = []
        self.cancel_on_sleep = cancel_on_sleep

    def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        self.sleeps.append(seconds)
        if self.cancel_on_sleep is not None and len(self.sleeps) >= self.cancel_on_sleep:
            self.cancel("test stop")
            raise OperationCancelled("test stop")


def txid_for(index: int) -> str:
    return f"0x{index:064x}"


def build_job(**overrides: object) -> Job:
    job = Job(
        job_id=0,
        payer=PAYER,
        agent=AGENT,
        input_token=f"{DEPLOYER}.mock-usdcx",
        max_input_amount=1_000_000,
        agent_fee_amount=50_000,
        min_output_amount=1_000,
        lock_period=10,
        expiry_block=200,
        created_at_block=90,
        status=JobStatus.OPEN,
        fee_paid=False,
    )
    return replace(job, **overrides)


@pytest.fixture()
def make_job() -> Callable[..., Job]:
    return build_job


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def transactions() -> FakeTransactions:
    return FakeTransactions()


@pytest.fixture()
def token() -> RecordingToken:
    return RecordingToken()


@pytest.fixture(autouse=True)
def _clean_proofrail_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from PROOFRAIL_* variables in the developer shell."""

    for name in list(os.environ):
        if name.startswith("PROOFRAIL_"):
            monkeypatch.delenv(name, raising=False)
