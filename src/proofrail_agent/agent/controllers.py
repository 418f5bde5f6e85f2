"""Controllers for agent CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import httpx

from proofrail_agent.agent.cancellation import CancellationToken
from proofrail_agent.agent.catalog import JobCatalog
from proofrail_agent.agent.confirmation import ConfirmationWaiter
from proofrail_agent.agent.eligibility import EligibilityPolicy
from proofrail_agent.agent.planner import ExecutionContracts, ExecutionPlanner
from proofrail_agent.agent.pricing import PythPriceGate
from proofrail_agent.agent.scheduler import SchedulerLoop
from proofrail_agent.agent.submitter import Submitter
from proofrail_agent.config import Settings
from proofrail_agent.ledger.c32 import c32_address_decode
from proofrail_agent.ledger.models import Job, JobStatus, LedgerQueryError
from proofrail_agent.ledger.schema import JobDecodeError
from proofrail_agent.ledger.signer import CommandSigner, TransactionSigner
from proofrail_agent.ledger.stacks_api import StacksApiClient
from proofrail_agent.storage.journal import JobJournal


@dataclass(slots=True)
class AgentRunCommand:
    """CLI input for the monitoring loop."""

    db_path: Path | None
    once: bool
    max_cycles: int | None = None


@dataclass(slots=True)
class AgentJobsCommand:
    """CLI input for open job listing."""

    db_path: Path | None
    include_unclaimed: bool = False


@dataclass(slots=True)
class AgentInspectJobCommand:
    """CLI input for one job lookup."""

    db_path: Path | None
    job_id: int


@dataclass(slots=True)
class AgentExecuteCommand:
    """CLI input for a manual execution of one job."""

    db_path: Path | None
    job_id: int
    swap_amount: int | None = None
    factor: int | None = None


@dataclass(slots=True)
class AgentClaimFeeCommand:
    """CLI input for a manual fee claim."""

    db_path: Path | None
    job_id: int


@dataclass(slots=True)
class AgentHistoryCommand:
    """CLI input for journal listing."""

    db_path: Path | None
    limit: int
    job_id: int | None = None


class AgentCliController:
    """Builds the agent from settings and renders CLI output lines.

    ``transport``, ``pyth_transport`` and ``signer`` replace the network and
    signing seams; the CLI leaves them unset.
    """

    def __init__(
        self,
        *,
        transport: httpx.BaseTransport | None = None,
        pyth_transport: httpx.BaseTransport | None = None,
        signer: TransactionSigner | None = None,
    ) -> None:
        self.transport = transport
        self.pyth_transport = pyth_transport
        self.signer = signer

    def run(self, command: AgentRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate(require_signer=self.signer is None)
        with _journal(settings) as journal, self._client(settings, signing=True) as client:
            scheduler = self.build_scheduler(settings=settings, client=client, journal=journal)
            try:
                summary = (
                    scheduler.run_once()
                    if command.once
                    else scheduler.start(max_cycles=command.max_cycles)
                )
            finally:
                _close_price_gate(scheduler.policy)

        return [f"Agent summary: {summary.render()}"]

    def list_jobs(self, command: AgentJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate(require_signer=False)
        agent = settings.agent.agent_address
        with self._client(settings, signing=False) as client:
            catalog = JobCatalog(ledger=client, scan_window=settings.monitoring.scan_window)
            jobs = catalog.list_open_jobs_for_agent(agent)
            unclaimed = (
                catalog.list_unclaimed_fee_jobs_for_agent(agent)
                if command.include_unclaimed
                else []
            )
            height = client.get_current_block_height()

        policy = EligibilityPolicy(
            min_fee_amount=settings.monitoring.min_fee_amount,
            expiry_margin_blocks=settings.monitoring.expiry_margin_blocks,
        )
        lines = [f"Open jobs for {agent} at block {height}: {len(jobs)}"]
        for job in jobs:
            decision = policy.evaluate(job, height)
            verdict = (
                "eligible"
                if decision.accepted
                else f"skip ({decision.reason.value if decision.reason else 'rejected'})"
            )
            lines.append(f"- {_job_line(job)} | {verdict}")
        if command.include_unclaimed:
            lines.append(f"Executed jobs with unclaimed fee: {len(unclaimed)}")
            lines.extend(f"- {_job_line(job)}" for job in unclaimed)
        return lines

    def inspect_job(self, command: AgentInspectJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate(require_signer=False)
        with self._client(settings, signing=False) as client:
            try:
                job = client.get_job(command.job_id)
            except (LedgerQueryError, JobDecodeError) as error:
                return [f"Job {command.job_id}: unavailable ({error})"]

        if job is None:
            return [f"Job {command.job_id}: not found"]
        return [
            f"Job {job.job_id}: status={job.status.value} fee_paid={job.fee_paid}",
            f"Payer: {job.payer}",
            f"Agent: {job.agent}",
            f"Input token: {job.input_token}",
            f"Max input: {job.max_input_amount}",
            f"Agent fee: {job.agent_fee_amount}",
            f"Min output: {job.min_output_amount}",
            f"Lock period: {job.lock_period}",
            f"Created at block: {job.created_at_block}",
            f"Expiry block: {job.expiry_block}",
            f"Executed at block: {_optional(job.executed_at_block)}",
            f"Receipt hash: {job.receipt_hash.hex() if job.receipt_hash else '-'}",
        ]

    def address(self) -> list[str]:
        settings = Settings.from_env()
        settings.validate(require_signer=False)
        version, hash160 = c32_address_decode(settings.agent.agent_address)
        return [
            f"Agent address: {settings.agent.agent_address}",
            f"Network: {settings.network.network}",
            f"Version: {version}",
            f"Hash160: {hash160.hex()}",
        ]

    def execute(self, command: AgentExecuteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate(require_signer=self.signer is None)
        with _journal(settings) as journal, self._client(settings, signing=True) as client:
            job = _require_job(client, command.job_id, agent=settings.agent.agent_address)
            if job.status is not JobStatus.OPEN:
                raise ValueError(f"Job {job.job_id} is not open (status={job.status.value}).")
            scheduler = self.build_scheduler(settings=settings, client=client, journal=journal)
            try:
                confirmed = scheduler.execute_job(
                    job,
                    swap_amount=command.swap_amount,
                    factor=command.factor,
                )
            finally:
                _close_price_gate(scheduler.policy)

        return [
            f"Job {job.job_id}: execute confirmed txid={confirmed.txid} "
            f"height={confirmed.height}",
            f"Next: proofrail-agent claim-fee --job-id {job.job_id}",
        ]

    def claim_fee(self, command: AgentClaimFeeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate(require_signer=self.signer is None)
        with _journal(settings) as journal, self._client(settings, signing=True) as client:
            job = _require_job(client, command.job_id, agent=settings.agent.agent_address)
            if job.status is not JobStatus.EXECUTED:
                raise ValueError(f"Job {job.job_id} is not executed (status={job.status.value}).")
            if job.fee_paid:
                raise ValueError(f"Job {job.job_id}: fee already claimed.")
            scheduler = self.build_scheduler(settings=settings, client=client, journal=journal)
            try:
                confirmed = scheduler.claim_fee(job.job_id)
            finally:
                _close_price_gate(scheduler.policy)

        return [
            f"Job {job.job_id}: claim-fee confirmed txid={confirmed.txid} "
            f"height={confirmed.height}",
        ]

    def history(self, command: AgentHistoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _journal(settings) as journal:
            runs = journal.list_recent(limit=command.limit, job_id=command.job_id)
        if not runs:
            return ["No journal entries."]
        return [
            f"{run.started_at.isoformat()} job={run.job_id} phase={run.phase.value} "
            f"status={run.status.value} txid={_optional(run.txid)} "
            f"reason={_optional(run.reason)}"
            for run in runs
        ]

    def build_scheduler(
        self,
        *,
        settings: Settings,
        client: StacksApiClient,
        journal: JobJournal | None = None,
    ) -> SchedulerLoop:
        """Wire every loop component around one cancellation token."""

        cancellation = CancellationToken()
        contracts = settings.contracts
        price_gate = None
        if settings.price_validation.enabled:
            price_gate = PythPriceGate(
                api_url=settings.price_validation.api_url,
                feed_id=settings.price_validation.feed_id,
                max_age_seconds=settings.price_validation.max_age_seconds,
                max_confidence_ratio=settings.price_validation.max_confidence_ratio,
                timeout_seconds=settings.network.http_timeout_seconds,
                transport=self.pyth_transport,
            )
        return SchedulerLoop(
            agent=settings.agent.agent_address,
            ledger=client,
            catalog=JobCatalog(ledger=client, scan_window=settings.monitoring.scan_window),
            policy=EligibilityPolicy(
                min_fee_amount=settings.monitoring.min_fee_amount,
                expiry_margin_blocks=settings.monitoring.expiry_margin_blocks,
                price_gate=price_gate,
                failure_policy=settings.price_validation.failure_policy,
            ),
            planner=ExecutionPlanner(
                contracts=ExecutionContracts(
                    router=contracts.contract_id("router"),
                    escrow=contracts.contract_id("escrow"),
                    input_token=contracts.contract_id("input_token"),
                    output_token=contracts.contract_id("output_token"),
                    swap_helper=contracts.contract_id("swap_helper"),
                    staking=contracts.contract_id("staking"),
                ),
                claim_fee_function=contracts.claim_fee_function,
            ),
            submitter=Submitter(
                port=client,
                max_retries=settings.submission.max_retries,
                base_delay_ms=settings.submission.base_delay_ms,
                cancellation=cancellation,
            ),
            waiter=ConfirmationWaiter(
                ledger=client,
                transactions=client,
                max_wait_blocks=settings.confirmation.max_wait_blocks,
                poll_interval_ms=settings.confirmation.poll_interval_ms,
                cancellation=cancellation,
            ),
            cancellation=cancellation,
            poll_interval_ms=settings.monitoring.poll_interval_ms,
            reclaim_fees=settings.monitoring.reclaim_fees,
            journal=journal,
        )

    @contextmanager
    def _client(self, settings: Settings, *, signing: bool) -> Iterator[StacksApiClient]:
        signer = self.signer
        if signing and signer is None:
            signer = CommandSigner(
                command=settings.agent.signer_command,
                timeout_seconds=settings.agent.signer_timeout_seconds,
            )
        client = StacksApiClient(
            api_url=settings.network.api_url,
            escrow=settings.contracts.contract_id("escrow"),
            sender=settings.agent.agent_address,
            network=settings.network.network,
            signer=signer if signing else None,
            tx_fee=settings.agent.tx_fee,
            timeout_seconds=settings.network.http_timeout_seconds,
            transport=self.transport,
        )
        try:
            yield client
        finally:
            client.close()


@contextmanager
def _journal(settings: Settings) -> Iterator[JobJournal]:
    journal = JobJournal(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    journal.init_schema()
    try:
        yield journal
    finally:
        journal.close()


def _require_job(client: StacksApiClient, job_id: int, *, agent: str) -> Job:
    job = client.get_job(job_id)
    if job is None:
        raise ValueError(f"Job {job_id} not found.")
    if job.agent != agent:
        raise ValueError(f"Job {job_id} is assigned to {job.agent}, not {agent}.")
    return job


def _close_price_gate(policy: EligibilityPolicy) -> None:
    if isinstance(policy.price_gate, PythPriceGate):
        policy.price_gate.close()


def _job_line(job: Job) -> str:
    return (
        f"job={job.job_id} status={job.status.value} fee={job.agent_fee_amount} "
        f"max_input={job.max_input_amount} min_output={job.min_output_amount} "
        f"expiry={job.expiry_block}"
    )


def _optional(value: object | None) -> str:
    return "-" if value is None else str(value)
