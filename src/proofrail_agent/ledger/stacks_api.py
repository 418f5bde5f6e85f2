"""Stacks node HTTP API client implementing the ledger and transaction ports."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from proofrail_agent.ledger.clarity import ClarityDecodeError, ClarityValue, CUInt, from_hex, to_hex
from proofrail_agent.ledger.models import (
    BroadcastError,
    ContractCall,
    ContractId,
    Job,
    LedgerQueryError,
    TxStatus,
)
from proofrail_agent.ledger.schema import JobDecodeError, decode_job, decode_uint
from proofrail_agent.ledger.signer import SignerError, SignRequest, TransactionSigner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TX_FEE = 1_000
DEFAULT_USER_AGENT = "proofrail-agent/1.0"


class StacksApiClient:
    """Escrow reads, chain height, and transaction submission over the node API."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_url: str,
        escrow: ContractId,
        sender: str,
        network: str = "testnet",
        signer: TransactionSigner | None = None,
        tx_fee: int = DEFAULT_TX_FEE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.escrow = escrow
        self.sender = sender
        self.network = network
        self.signer = signer
        self.tx_fee = tx_fee
        self._client = httpx.Client(
            base_url=self.api_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": DEFAULT_USER_AGENT},
            transport=transport or httpx.HTTPTransport(retries=1),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> StacksApiClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    # Read-only queries

    def call_read_only(
        self,
        contract: ContractId,
        function_name: str,
        args: Sequence[ClarityValue] = (),
    ) -> ClarityValue:
        """Evaluate a read-only contract function and decode its result."""

        path = f"/v2/contracts/call-read/{contract.address}/{contract.name}/{function_name}"
        payload = self._request_json(
            "POST",
            path,
            json={"sender": self.sender, "arguments": [to_hex(arg) for arg in args]},
        )
        if not isinstance(payload, dict):
            raise LedgerQueryError(f"{function_name}: expected JSON object from node")
        if not payload.get("okay"):
            raise LedgerQueryError(f"{function_name} failed: {payload.get('cause', 'unknown')}")
        result = payload.get("result")
        if not isinstance(result, str):
            raise LedgerQueryError(f"{function_name}: missing result in node response")
        try:
            return from_hex(result)
        except ClarityDecodeError as error:
            raise LedgerQueryError(f"{function_name}: undecodable result: {error}") from error

    def get_next_job_id(self) -> int:
        value = self.call_read_only(self.escrow, "get-next-job-id")
        try:
            return decode_uint(value, context="get-next-job-id")
        except JobDecodeError as error:
            raise LedgerQueryError(str(error)) from error

    def get_job(self, job_id: int) -> Job | None:
        value = self.call_read_only(self.escrow, "get-job", (CUInt(job_id),))
        return decode_job(job_id, value)

    def get_current_block_height(self) -> int:
        payload = self._request_json("GET", "/v2/info")
        height = payload.get("stacks_tip_height") if isinstance(payload, dict) else None
        if not isinstance(height, int) or isinstance(height, bool):
            raise LedgerQueryError("Node info response has no stacks_tip_height")
        return height

    def get_nonce(self, address: str) -> int:
        payload = self._request_json("GET", f"/extended/v1/address/{address}/nonces")
        nonce = payload.get("possible_next_nonce") if isinstance(payload, dict) else None
        if not isinstance(nonce, int) or isinstance(nonce, bool):
            raise LedgerQueryError(f"Nonce response for {address} has no possible_next_nonce")
        return nonce

    # Transactions

    def submit(self, call: ContractCall) -> str:
        """Sign and broadcast one attempt of ``call``."""

        if self.signer is None:
            raise BroadcastError("No transaction signer configured.", transient=False)
        try:
            nonce = self.get_nonce(self.sender)
        except LedgerQueryError as error:
            raise BroadcastError(f"Nonce lookup failed: {error}", transient=True) from error
        try:
            raw = self.signer.sign(
                SignRequest(call=call, nonce=nonce, fee=self.tx_fee, network=self.network),
            )
        except SignerError as error:
            raise BroadcastError(
                f"Signing {call.describe()} failed: {error}",
                transient=error.transient,
            ) from error
        return self.broadcast_raw(raw)

    def broadcast_raw(self, payload: bytes) -> str:
        """Post a serialized signed transaction and return its txid."""

        try:
            response = self._client.post(
                "/v2/transactions",
                content=payload,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.TimeoutException as error:
            raise BroadcastError("Broadcast timed out", transient=True) from error
        except httpx.HTTPError as error:
            raise BroadcastError(f"Broadcast transport error: {error}", transient=True) from error

        body = _json_or_text(response)
        if not response.is_success:
            error_text, reason = _broadcast_rejection(body)
            raise BroadcastError(
                f"Transaction broadcast failed ({response.status_code}): {error_text}",
                transient=response.status_code >= 500,  # noqa: PLR2004
                reason=reason,
            )
        if isinstance(body, dict) and body.get("error"):
            error_text, reason = _broadcast_rejection(body)
            raise BroadcastError(
                f"Transaction broadcast failed: {error_text}",
                transient=False,
                reason=reason,
            )
        txid = body if isinstance(body, str) else None
        if not txid:
            raise BroadcastError("Broadcast response carried no txid", transient=True)
        return _normalize_txid(txid)

    def get_status(self, txid: str) -> TxStatus:
        path = f"/extended/v1/tx/{_normalize_txid(txid)}"
        try:
            response = self._client.get(path)
        except httpx.HTTPError as error:
            raise LedgerQueryError(f"Status lookup for {txid} failed: {error}") from error
        if response.status_code == 404:  # noqa: PLR2004
            return TxStatus.PENDING
        if not response.is_success:
            raise LedgerQueryError(f"Status lookup for {txid} returned HTTP {response.status_code}")
        body = _json_or_text(response)
        if not isinstance(body, dict):
            raise LedgerQueryError(f"Status lookup for {txid} returned non-object payload")
        raw_status = body.get("tx_status")
        return TxStatus.parse(raw_status if isinstance(raw_status, str) else None)

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:  # noqa: ANN401
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling %s %s", method, path)
            raise LedgerQueryError(f"Timeout calling {path}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling %s %s: %s", method, path, error)
            raise LedgerQueryError(f"HTTP error calling {path}: {error}") from error
        if not response.is_success:
            raise LedgerQueryError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
            )
        try:
            return response.json()
        except ValueError as error:
            raise LedgerQueryError(f"{method} {path} returned invalid JSON") from error


def _json_or_text(response: httpx.Response) -> Any:  # noqa: ANN401
    try:
        return response.json()
    except ValueError:
        return response.text.strip()


def _broadcast_rejection(body: Any) -> tuple[str, str | None]:  # noqa: ANN401
    if isinstance(body, dict):
        error_text = str(body.get("error") or body)
        reason = body.get("reason")
        return error_text, str(reason) if reason is not None else None
    return str(body)[:200], None


def _normalize_txid(txid: str) -> str:
    stripped = txid.strip().strip('"')
    return stripped if stripped.startswith("0x") else f"0x{stripped}"
