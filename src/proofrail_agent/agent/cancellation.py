"""Cooperative cancellation and per-signer submission slots."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class OperationCancelled(RuntimeError):  # noqa: N818
    """A wait was interrupted because stop was requested."""


class CancellationToken:
    """Stop flag shared by the loop, the submitter backoff and confirmation polling."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "stop requested") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise ``OperationCancelled`` if woken by cancel."""

        self.raise_if_cancelled()
        if seconds <= 0:
            return
        if self._event.wait(timeout=seconds):
            raise OperationCancelled(self.reason or "cancelled")


class SignerSlots:
    """One in-flight submission sequence per agent identity.

    Every ledger-mutating step for an identity consumes its next nonce, so two
    sequences for the same identity must never interleave.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, identity: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.setdefault(identity, threading.Lock())
        with slot:
            yield

    def is_busy(self, identity: str) -> bool:
        with self._guard:
            slot = self._slots.get(identity)
        return slot is not None and slot.locked()
