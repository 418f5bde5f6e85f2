"""CLI entrypoint for proofrail-agent."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from proofrail_agent import __version__
from proofrail_agent.agent.controllers import (
    AgentClaimFeeCommand,
    AgentCliController,
    AgentExecuteCommand,
    AgentHistoryCommand,
    AgentInspectJobCommand,
    AgentJobsCommand,
    AgentRunCommand,
)
from proofrail_agent.agent.scheduler import PhaseFailed
from proofrail_agent.ledger.models import LedgerQueryError
from proofrail_agent.logging_config import configure_logging

click.rich_click.USE_MARKDOWN = True
AGENT_CONTROLLER = AgentCliController()

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="proofrail-agent")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root log level.",
)
@click.option("--json-logs", is_flag=True, default=False, help="Emit one JSON object per log line.")
def proofrail_agent(log_level: str, json_logs: bool) -> None:
    """Executor agent for ProofRail escrow jobs.

    Configuration comes from `PROOFRAIL_*` environment variables.
    """

    configure_logging(log_level, json_output=json_logs)


@proofrail_agent.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many cycles; runs until SIGINT/SIGTERM by default.",
)
def run(db_path: Path | None, max_cycles: int | None) -> None:
    """Monitor, execute, and settle jobs until stopped."""

    _emit_lines(
        _guarded(
            lambda: AGENT_CONTROLLER.run(
                AgentRunCommand(db_path=db_path, once=False, max_cycles=max_cycles),
            ),
        ),
    )


@proofrail_agent.command("once")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def once(db_path: Path | None) -> None:
    """Run a single monitoring cycle."""

    _emit_lines(
        _guarded(lambda: AGENT_CONTROLLER.run(AgentRunCommand(db_path=db_path, once=True))),
    )


@proofrail_agent.command("jobs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--unclaimed",
    is_flag=True,
    default=False,
    help="Also list executed jobs whose fee is still unclaimed.",
)
def jobs(db_path: Path | None, unclaimed: bool) -> None:
    """List open jobs assigned to the configured agent."""

    _emit_lines(
        _guarded(
            lambda: AGENT_CONTROLLER.list_jobs(
                AgentJobsCommand(db_path=db_path, include_unclaimed=unclaimed),
            ),
        ),
    )


@proofrail_agent.command("job")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", type=click.IntRange(min=0), required=True, help="Escrow job id.")
def job(db_path: Path | None, job_id: int) -> None:
    """Show one decoded escrow job."""

    _emit_lines(
        _guarded(
            lambda: AGENT_CONTROLLER.inspect_job(
                AgentInspectJobCommand(db_path=db_path, job_id=job_id),
            ),
        ),
    )


@proofrail_agent.command("address")
def address() -> None:
    """Show the configured agent address."""

    _emit_lines(_guarded(AGENT_CONTROLLER.address))


@proofrail_agent.command("execute")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", type=click.IntRange(min=0), required=True, help="Escrow job id.")
@click.option(
    "--swap-amount",
    type=click.IntRange(min=1),
    default=None,
    help="Input amount to swap; defaults to half of the job's max input.",
)
@click.option(
    "--factor",
    type=click.IntRange(min=1),
    default=None,
    help="Swap factor passed to the router.",
)
def execute(db_path: Path | None, job_id: int, swap_amount: int | None, factor: int | None) -> None:
    """Execute one open job now and wait for confirmation.

    Eligibility rules are not applied; the fee is claimed separately with
    `claim-fee`.
    """

    _emit_lines(
        _guarded(
            lambda: AGENT_CONTROLLER.execute(
                AgentExecuteCommand(
                    db_path=db_path,
                    job_id=job_id,
                    swap_amount=swap_amount,
                    factor=factor,
                ),
            ),
        ),
    )


@proofrail_agent.command("claim-fee")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", type=click.IntRange(min=0), required=True, help="Escrow job id.")
def claim_fee(db_path: Path | None, job_id: int) -> None:
    """Claim the agent fee of an executed job and wait for confirmation."""

    _emit_lines(
        _guarded(
            lambda: AGENT_CONTROLLER.claim_fee(
                AgentClaimFeeCommand(db_path=db_path, job_id=job_id),
            ),
        ),
    )


@proofrail_agent.command("history")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max journal rows to print.",
)
@click.option("--job-id", type=click.IntRange(min=0), default=None, help="Filter by job id.")
def history(db_path: Path | None, limit: int, job_id: int | None) -> None:
    """Show recent execute and claim-fee runs from the local journal."""

    _emit_lines(
        _guarded(
            lambda: AGENT_CONTROLLER.history(
                AgentHistoryCommand(db_path=db_path, limit=limit, job_id=job_id),
            ),
        ),
    )


def _guarded(action: Callable[[], T]) -> T:
    try:
        return action()
    except (ValueError, LedgerQueryError, PhaseFailed) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    proofrail_agent()
