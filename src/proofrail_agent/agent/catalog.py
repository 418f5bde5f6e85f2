"""Discovery of escrow jobs assigned to this agent."""

from __future__ import annotations

import logging
from collections.abc import Callable

from proofrail_agent.ledger.base import LedgerQueryPort
from proofrail_agent.ledger.models import Job, JobStatus, LedgerQueryError
from proofrail_agent.ledger.schema import JobDecodeError

logger = logging.getLogger(__name__)

DEFAULT_SCAN_WINDOW = 100


class JobCatalog:
    """Scans the most recent ``scan_window`` job ids.

    Jobs older than the window are invisible to the agent. The window is a
    pragmatic bound on per-cycle read calls, not a completeness guarantee.
    """

    def __init__(self, *, ledger: LedgerQueryPort, scan_window: int = DEFAULT_SCAN_WINDOW) -> None:
        if scan_window <= 0:
            raise ValueError("scan_window must be > 0")
        self.ledger = ledger
        self.scan_window = scan_window

    def list_open_jobs_for_agent(self, agent: str) -> list[Job]:
        """Return OPEN jobs assigned to ``agent``; empty when the id range is unreadable."""

        return self._scan(
            agent,
            lambda job: job.status is JobStatus.OPEN,
        )

    def list_unclaimed_fee_jobs_for_agent(self, agent: str) -> list[Job]:
        """Return EXECUTED jobs assigned to ``agent`` whose fee has not been paid."""

        return self._scan(agent, lambda job: job.has_unclaimed_fee)

    def scan_range(self) -> range:
        """Resolve the half-open id window ``[max(0, N - W), N)``."""

        next_id = self.ledger.get_next_job_id()
        return range(max(0, next_id - self.scan_window), next_id)

    def _scan(self, agent: str, accept: Callable[[Job], bool]) -> list[Job]:
        try:
            ids = self.scan_range()
        except LedgerQueryError as error:
            logger.warning("Job catalog unavailable this cycle: %s", error)
            return []

        matched: list[Job] = []
        for job_id in ids:
            job = self._fetch(job_id)
            if job is None:
                continue
            if job.agent != agent or not accept(job):
                continue
            matched.append(job)
        logger.debug(
            "Scanned job ids [%d, %d): %d match(es) for %s",
            ids.start,
            ids.stop,
            len(matched),
            agent,
        )
        return matched

    def _fetch(self, job_id: int) -> Job | None:
        try:
            return self.ledger.get_job(job_id)
        except LedgerQueryError as error:
            logger.debug("Skipping job %d: %s", job_id, error, extra={"job_id": job_id})
            return None
        except JobDecodeError as error:
            logger.warning(
                "Skipping undecodable job %d: %s",
                job_id,
                error,
                extra={"job_id": job_id},
            )
            return None
