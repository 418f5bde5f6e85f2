"""Polling loop that discovers, executes, and settles escrow jobs."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from proofrail_agent.agent.cancellation import CancellationToken, OperationCancelled, SignerSlots
from proofrail_agent.agent.catalog import JobCatalog
from proofrail_agent.agent.confirmation import (
    ConfirmationError,
    ConfirmationTimedOut,
    ConfirmationWaiter,
    Confirmed,
)
from proofrail_agent.agent.eligibility import EligibilityPolicy
from proofrail_agent.agent.planner import ExecutionPlanner
from proofrail_agent.agent.submitter import BroadcastExhausted, Submitter
from proofrail_agent.ledger.base import LedgerQueryPort
from proofrail_agent.ledger.models import ContractCall, Job, LedgerQueryError
from proofrail_agent.storage.journal import JobJournal, RunPhase, RunStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 30_000


class LoopState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class JobOutcome(str, Enum):
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class CycleSummary:
    """Aggregate loop counters for CLI reporting."""

    cycles: int = 0
    scanned: int = 0
    accepted: int = 0
    rejected: int = 0
    executed: int = 0
    fees_claimed: int = 0
    failed: int = 0
    cycle_errors: int = 0

    def merge(self, other: CycleSummary) -> None:
        self.cycles += other.cycles
        self.scanned += other.scanned
        self.accepted += other.accepted
        self.rejected += other.rejected
        self.executed += other.executed
        self.fees_claimed += other.fees_claimed
        self.failed += other.failed
        self.cycle_errors += other.cycle_errors

    def render(self) -> str:
        return (
            f"cycles={self.cycles} scanned={self.scanned} accepted={self.accepted} "
            f"rejected={self.rejected} executed={self.executed} "
            f"fees_claimed={self.fees_claimed} failed={self.failed} "
            f"cycle_errors={self.cycle_errors}"
        )


class PhaseFailed(Exception):  # noqa: N818
    def __init__(self, reason: str, txid: str | None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.txid = txid


class SchedulerLoop:
    """Sequential cycle: catalog -> eligibility -> plan -> execute -> claim fee.

    Jobs are processed one at a time. Every ledger-mutating sequence for the
    agent runs inside its signer slot, and the fee claim is only submitted
    after the execution transaction is confirmed. ``stop()`` cancels the
    shared token, which also interrupts backoff sleeps and confirmation polls.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        agent: str,
        ledger: LedgerQueryPort,
        catalog: JobCatalog,
        policy: EligibilityPolicy,
        planner: ExecutionPlanner,
        submitter: Submitter,
        waiter: ConfirmationWaiter,
        cancellation: CancellationToken,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        reclaim_fees: bool = True,
        signer_slots: SignerSlots | None = None,
        journal: JobJournal | None = None,
    ) -> None:
        self.agent = agent
        self.ledger = ledger
        self.catalog = catalog
        self.policy = policy
        self.planner = planner
        self.submitter = submitter
        self.waiter = waiter
        self.cancellation = cancellation
        self.poll_interval_ms = poll_interval_ms
        self.reclaim_fees = reclaim_fees
        self.signer_slots = signer_slots or SignerSlots()
        self.journal = journal
        self._state = LoopState.STOPPED

    @property
    def state(self) -> LoopState:
        return self._state

    def start(self, *, max_cycles: int | None = None) -> CycleSummary:
        """Run cycles until ``stop()`` (or ``max_cycles``), sleeping between them.

        A loop runs once. ``stop()`` cancels the token shared with the
        submitter and waiter for good, so a later ``start()`` returns an empty
        summary; build a new loop (and token) to run again.
        """

        aggregate = CycleSummary()
        if self.cancellation.cancelled:
            logger.warning(
                "Agent loop not started: already stopped (%s)",
                self.cancellation.reason or "cancelled",
            )
            return aggregate
        self._state = LoopState.RUNNING
        logger.info(
            "Agent loop starting for %s (poll every %dms)",
            self.agent,
            self.poll_interval_ms,
        )
        try:
            with self._signal_handlers():
                while not self.cancellation.cancelled:
                    if max_cycles is not None and aggregate.cycles >= max_cycles:
                        break
                    try:
                        summary = self.run_once()
                    except OperationCancelled:
                        break
                    except Exception:  # noqa: BLE001
                        logger.exception("Error in monitoring loop")
                        summary = CycleSummary(cycles=1, cycle_errors=1)
                    aggregate.merge(summary)

                    if self.cancellation.cancelled:
                        break
                    if max_cycles is not None and aggregate.cycles >= max_cycles:
                        break
                    try:
                        self.cancellation.sleep(self.poll_interval_ms / 1000)
                    except OperationCancelled:
                        break
        finally:
            self._state = LoopState.STOPPED
            logger.info("Agent loop stopped: %s", aggregate.render())
        return aggregate

    def stop(self, reason: str = "stop requested") -> None:
        logger.info("Stopping agent loop: %s", reason)
        self.cancellation.cancel(reason)

    def run_once(self) -> CycleSummary:
        """Process every open job once, then sweep unclaimed fees."""

        summary = CycleSummary(cycles=1)
        if self.cancellation.cancelled:
            return summary

        jobs = self.catalog.list_open_jobs_for_agent(self.agent)
        summary.scanned = len(jobs)
        if not jobs:
            logger.info("No jobs found")
        else:
            logger.info("Found %d job(s)", len(jobs))

        claim_failed: set[int] = set()
        for job in jobs:
            if self.cancellation.cancelled:
                return summary
            outcome = self.process_job(job, summary=summary, claim_failed=claim_failed)
            if outcome is JobOutcome.CANCELLED:
                return summary

        if self.reclaim_fees and not self.cancellation.cancelled:
            self._reclaim_fees(summary=summary, skip=claim_failed)
        return summary

    def process_job(
        self,
        job: Job,
        *,
        summary: CycleSummary | None = None,
        claim_failed: set[int] | None = None,
    ) -> JobOutcome:
        """Evaluate one job and, when accepted, execute it and claim its fee."""

        summary = summary if summary is not None else CycleSummary()
        extra = {"job_id": job.job_id}
        logger.info(
            "Processing job: payer=%s fee=%d max_input=%d",
            job.payer,
            job.agent_fee_amount,
            job.max_input_amount,
            extra=extra,
        )

        try:
            current_height = self.ledger.get_current_block_height()
        except LedgerQueryError as error:
            summary.failed += 1
            logger.error("Cannot read block height: %s", error, extra=extra)
            return JobOutcome.FAILED

        decision = self.policy.evaluate(job, current_height)
        if not decision.accepted:
            summary.rejected += 1
            reason = decision.reason.value if decision.reason is not None else "rejected"
            logger.info("Skipping job: %s", decision.detail, extra={**extra, "reason": reason})
            return JobOutcome.REJECTED
        summary.accepted += 1

        params = self.planner.plan(job)
        logger.info(
            "Executing job: swap_amount=%d min_output=%d",
            params.swap_amount,
            params.min_output_amount,
            extra=extra,
        )

        executed = False
        with self.signer_slots.hold(self.agent):
            try:
                self._run_phase(job.job_id, RunPhase.EXECUTE, self.planner.execution_call(params))
                executed = True
                summary.executed += 1
                claim = self.planner.claim_fee_call(job.job_id)
                self._run_phase(job.job_id, RunPhase.CLAIM_FEE, claim)
                summary.fees_claimed += 1
            except OperationCancelled:
                logger.warning("Job interrupted by stop request", extra=extra)
                return JobOutcome.CANCELLED
            except PhaseFailed as failure:
                summary.failed += 1
                if executed and claim_failed is not None:
                    claim_failed.add(job.job_id)
                logger.error(
                    "Failed to complete job: %s",
                    failure.reason,
                    extra={**extra, "reason": failure.reason, "txid": failure.txid},
                )
                return JobOutcome.FAILED

        logger.info("Job completed successfully", extra=extra)
        return JobOutcome.COMPLETED

    def execute_job(
        self,
        job: Job,
        *,
        swap_amount: int | None = None,
        factor: int | None = None,
    ) -> Confirmed:
        """Execute ``job`` on operator request, skipping eligibility.

        Raises ``PhaseFailed`` when the transaction is not confirmed.
        """

        params = self.planner.plan(job, swap_amount=swap_amount, factor=factor)
        with self.signer_slots.hold(self.agent):
            call = self.planner.execution_call(params)
            return self._run_phase(job.job_id, RunPhase.EXECUTE, call)

    def claim_fee(self, job_id: int) -> Confirmed:
        with self.signer_slots.hold(self.agent):
            return self._run_phase(job_id, RunPhase.CLAIM_FEE, self.planner.claim_fee_call(job_id))

    def _reclaim_fees(self, *, summary: CycleSummary, skip: set[int]) -> None:
        for job in self.catalog.list_unclaimed_fee_jobs_for_agent(self.agent):
            if self.cancellation.cancelled:
                return
            if job.job_id in skip:
                continue
            extra = {"job_id": job.job_id}
            logger.info("Claiming outstanding fee for executed job", extra=extra)
            with self.signer_slots.hold(self.agent):
                try:
                    self._run_phase(
                        job.job_id,
                        RunPhase.CLAIM_FEE,
                        self.planner.claim_fee_call(job.job_id),
                    )
                except OperationCancelled:
                    return
                except PhaseFailed as failure:
                    summary.failed += 1
                    logger.error(
                        "Fee claim failed: %s",
                        failure.reason,
                        extra={**extra, "reason": failure.reason, "txid": failure.txid},
                    )
                    continue
            summary.fees_claimed += 1

    def _run_phase(self, job_id: int, phase: RunPhase, call: ContractCall) -> Confirmed:
        """Submit ``call`` and wait for it; failures become ``PhaseFailed``."""

        run_id = (
            self.journal.start_run(job_id=job_id, agent=self.agent, phase=phase)
            if self.journal is not None
            else None
        )
        txid: str | None = None
        try:
            txid = self.submitter.submit(call, job_id=job_id)
            if run_id is not None and self.journal is not None:
                self.journal.record_txid(run_id, txid)
            confirmed = self.waiter.await_confirmation(txid, job_id=job_id)
        except OperationCancelled:
            self._finish(run_id, RunStatus.CANCELLED, reason="cancelled", txid=txid)
            raise
        except BroadcastExhausted as error:
            self._finish(run_id, RunStatus.FAILED, reason=f"{phase.value}: broadcast-exhausted")
            raise PhaseFailed(f"{phase.value}: {error}", txid) from error
        except ConfirmationTimedOut as error:
            self._finish(run_id, RunStatus.FAILED, reason=f"{phase.value}: timed-out", txid=txid)
            raise PhaseFailed(f"{phase.value}: {error}", txid) from error
        except ConfirmationError as error:
            self._finish(run_id, RunStatus.FAILED, reason=f"{phase.value}: aborted", txid=txid)
            raise PhaseFailed(f"{phase.value}: {error}", txid) from error
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected %s failure", phase.value, extra={"job_id": job_id})
            self._finish(run_id, RunStatus.FAILED, reason=f"{phase.value}: {error}", txid=txid)
            raise PhaseFailed(f"{phase.value}: {error}", txid) from error

        self._finish(run_id, RunStatus.SUCCEEDED, txid=confirmed.txid)
        return confirmed

    def _finish(
        self,
        run_id: str | None,
        status: RunStatus,
        *,
        reason: str | None = None,
        txid: str | None = None,
    ) -> None:
        if run_id is None or self.journal is None:
            return
        self.journal.finish_run(run_id, status=status, reason=reason, txid=txid)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.stop(reason=f"received {name}")

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
