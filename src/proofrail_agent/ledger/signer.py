"""Subprocess-based transaction signer.

Signing cryptography stays outside this process: a configured command
(for example a small script built on ``@stacks/transactions``) receives the
unsigned contract call as JSON on stdin and prints the serialized signed
transaction as hex on stdout. The private key reaches the command through its
environment, never through argv.
"""

from __future__ import annotations

import json
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from proofrail_agent.ledger.clarity import to_hex
from proofrail_agent.ledger.models import ContractCall


class SignerError(RuntimeError):
    """Signer failed to produce a transaction, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(frozen=True, slots=True)
class SignRequest:
    """Everything the external signer needs to build one transaction."""

    call: ContractCall
    nonce: int
    fee: int
    network: str

    def to_payload(self) -> dict[str, object]:
        return {
            "contract_address": self.call.contract.address,
            "contract_name": self.call.contract.name,
            "function_name": self.call.function_name,
            "function_args": [to_hex(arg) for arg in self.call.function_args],
            "nonce": self.nonce,
            "fee": self.fee,
            "network": self.network,
            "anchor_mode": "any",
            "post_condition_mode": "allow",
        }


class TransactionSigner(Protocol):
    """Produces a serialized signed transaction for a call."""

    def sign(self, request: SignRequest) -> bytes:
        """Return raw signed transaction bytes."""


class CommandSigner:
    """Run a signer command per transaction."""

    def __init__(
        self,
        *,
        command: str,
        timeout_seconds: float = 30.0,
        env: dict[str, str] | None = None,
    ) -> None:
        if not command.strip():
            raise SignerError("Signer command is empty.", transient=False)
        self.command = command
        self.timeout_seconds = timeout_seconds
        self._env = env

    def sign(self, request: SignRequest) -> bytes:
        run_args = shlex.split(self.command)
        env = os.environ.copy()
        if self._env:
            env.update(self._env)
        try:
            completed = subprocess.run(  # noqa: S603
                run_args,
                input=json.dumps(request.to_payload()),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env=env,
                check=False,
            )
        except FileNotFoundError as error:
            raise SignerError(
                f"Signer command not found: {run_args[0]}",
                transient=False,
            ) from error
        except subprocess.TimeoutExpired as error:
            raise SignerError(
                f"Signer command timed out after {self.timeout_seconds}s",
                transient=True,
            ) from error
        except OSError as error:
            raise SignerError(
                f"Signer command failed to start: {error}",
                transient=True,
            ) from error

        if completed.returncode != 0:
            stderr_tail = completed.stderr.strip()[-500:]
            raise SignerError(
                f"Signer exited with code {completed.returncode}: {stderr_tail}",
                transient=False,
            )
        return _parse_signed_hex(completed.stdout)


def _parse_signed_hex(stdout: str) -> bytes:
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    if not lines:
        raise SignerError("Signer produced no output.", transient=False)
    raw = lines[-1]
    if raw.startswith(("0x", "0X")):
        raw = raw[2:]
    try:
        payload = bytes.fromhex(raw)
    except ValueError as error:
        raise SignerError("Signer output is not a hex transaction.", transient=False) from error
    if not payload:
        raise SignerError("Signer produced an empty transaction.", transient=False)
    return payload
