from __future__ import annotations

from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from proofrail_agent.storage.journal import JobJournal, RunPhase, RunStatus

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Execution Journal"),
]

AGENT = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"


@pytest.fixture()
def journal(tmp_path: Path):
    journal = JobJournal(tmp_path / "journal.db")
    journal.init_schema()
    yield journal
    journal.close()


def test_run_lifecycle_is_persisted(journal: JobJournal) -> None:
    run_id = journal.start_run(job_id=4, agent=AGENT, phase=RunPhase.EXECUTE)
    journal.record_txid(run_id, "0xabc")
    journal.finish_run(run_id, status=RunStatus.SUCCEEDED)

    [run] = journal.list_recent()

    assert run.run_id == run_id
    assert run.job_id == 4
    assert run.agent == AGENT
    assert run.phase is RunPhase.EXECUTE
    assert run.status is RunStatus.SUCCEEDED
    assert run.txid == "0xabc"
    assert run.reason is None
    assert run.started_at.tzinfo is not None
    assert run.finished_at is not None
    assert run.finished_at >= run.started_at


def test_open_run_has_running_status(journal: JobJournal) -> None:
    journal.start_run(job_id=1, agent=AGENT, phase=RunPhase.CLAIM_FEE)

    [run] = journal.list_recent()

    assert run.status is RunStatus.RUNNING
    assert run.finished_at is None


def test_failed_run_keeps_reason(journal: JobJournal) -> None:
    run_id = journal.start_run(job_id=2, agent=AGENT, phase=RunPhase.CLAIM_FEE)
    journal.finish_run(
        run_id,
        status=RunStatus.FAILED,
        reason="claim_fee: aborted",
        txid="0xdef",
    )

    [run] = journal.list_recent(job_id=2)

    assert run.status is RunStatus.FAILED
    assert run.reason == "claim_fee: aborted"
    assert run.txid == "0xdef"


def test_list_recent_filters_by_job_and_limits(journal: JobJournal) -> None:
    for job_id in (1, 1, 2, 3):
        journal.start_run(job_id=job_id, agent=AGENT, phase=RunPhase.EXECUTE)

    assert {run.job_id for run in journal.list_recent(job_id=1)} == {1}
    assert len(journal.list_recent(job_id=1)) == 2
    assert len(journal.list_recent(limit=3)) == 3


def test_finish_run_requires_terminal_status(journal: JobJournal) -> None:
    run_id = journal.start_run(job_id=1, agent=AGENT, phase=RunPhase.EXECUTE)

    with pytest.raises(ValueError, match="terminal status"):
        journal.finish_run(run_id, status=RunStatus.RUNNING)


def test_finish_unknown_run_raises(journal: JobJournal) -> None:
    with pytest.raises(KeyError):
        journal.finish_run("missing", status=RunStatus.FAILED)


def test_init_schema_is_idempotent(journal: JobJournal) -> None:
    journal.init_schema()
    journal.start_run(job_id=1, agent=AGENT, phase=RunPhase.EXECUTE)

    assert len(journal.list_recent()) == 1


def test_connections_use_configured_busy_timeout_and_wal(tmp_path: Path) -> None:
    journal = JobJournal(tmp_path / "journal.db", sqlite_busy_timeout_ms=250)
    try:
        with journal.engine.connect() as connection:
            busy_timeout = connection.execute(text("PRAGMA busy_timeout")).scalar_one()
            journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
    finally:
        journal.close()

    assert busy_timeout == 250
    assert journal_mode == "wal"
