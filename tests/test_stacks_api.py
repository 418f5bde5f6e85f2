from __future__ import annotations

import json

import allure
import httpx
import pytest

from proofrail_agent.ledger.clarity import (
    CBool,
    COptional,
    CPrincipal,
    CResponse,
    CTuple,
    CUInt,
    from_hex,
    to_hex,
)
from proofrail_agent.ledger.models import (
    BroadcastError,
    ContractCall,
    ContractId,
    JobStatus,
    LedgerQueryError,
    TxStatus,
)
from proofrail_agent.ledger.signer import SignerError, SignRequest
from proofrail_agent.ledger.stacks_api import StacksApiClient

pytestmark = [
    allure.epic("Ledger Access"),
    allure.feature("Node API Client"),
]

DEPLOYER = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
AGENT = "ST1SJ3DTE5DN7X54YDH5D64R3BCB6A2AG2ZQ8YPD5"
PAYER = "ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG"
ESCROW = ContractId(DEPLOYER, "job-escrow")
TXID = "ab" * 32
CALL = ContractCall(contract=ESCROW, function_name="claim-fee", function_args=(CUInt(1),))


class _StubSigner:
    def __init__(self, error: SignerError | None = None) -> None:
        self.error = error
        self.requests: list[SignRequest] = []

    def sign(self, request: SignRequest) -> bytes:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return b"\x80\x80\x00\x00\x00\x00\x01"


def _client(handler, *, signer: _StubSigner | None = None) -> StacksApiClient:
    return StacksApiClient(
        api_url="http://node.test/",
        escrow=ESCROW,
        sender=AGENT,
        signer=signer,
        tx_fee=2_000,
        transport=httpx.MockTransport(handler),
    )


def _job_tuple() -> CTuple:
    return CTuple(
        {
            "payer": CPrincipal(PAYER),
            "agent": CPrincipal(AGENT),
            "token-contract": CPrincipal(DEPLOYER, contract_name="mock-usdcx"),
            "max-input-usdcx": CUInt(1_000_000),
            "agent-fee-usdcx": CUInt(50_000),
            "min-alex-out": CUInt(1),
            "lock-period": CUInt(10),
            "expiry-block": CUInt(500),
            "created-at-block": CUInt(100),
            "status": CUInt(0),
            "fee-paid": CBool(False),
        },
    )


def test_get_job_posts_read_only_call_and_decodes_result() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"okay": True, "result": to_hex(COptional(_job_tuple()))})

    with _client(handler) as client:
        job = client.get_job(7)

    assert job is not None
    assert job.job_id == 7
    assert job.status is JobStatus.OPEN
    assert job.agent == AGENT
    assert seen[0].url.path == f"/v2/contracts/call-read/{DEPLOYER}/job-escrow/get-job"
    body = json.loads(seen[0].content)
    assert body["sender"] == AGENT
    assert [from_hex(arg) for arg in body["arguments"]] == [CUInt(7)]


def test_get_job_returns_none_for_missing_job() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"okay": True, "result": to_hex(COptional(None))})

    with _client(handler) as client:
        assert client.get_job(3) is None


def test_get_next_job_id_unwraps_ok_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        result = to_hex(CResponse(ok=True, value=CUInt(42)))
        return httpx.Response(200, json={"okay": True, "result": result})

    with _client(handler) as client:
        assert client.get_next_job_id() == 42


def test_read_only_failure_raises_ledger_query_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"okay": False, "cause": "Unchecked(NoSuchContract)"})

    with _client(handler) as client, pytest.raises(LedgerQueryError, match="NoSuchContract"):
        client.get_next_job_id()


def test_transport_failure_raises_ledger_query_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client, pytest.raises(LedgerQueryError, match="HTTP error"):
        client.get_current_block_height()


def test_get_current_block_height_reads_tip_height() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/info"
        return httpx.Response(200, json={"stacks_tip_height": 1234, "burn_block_height": 99})

    with _client(handler) as client:
        assert client.get_current_block_height() == 1234


def test_submit_signs_with_next_nonce_and_broadcasts() -> None:
    signer = _StubSigner()
    posted: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/extended/v1/address/{AGENT}/nonces":
            return httpx.Response(200, json={"possible_next_nonce": 12})
        posted.append(request)
        return httpx.Response(200, json=TXID)

    with _client(handler, signer=signer) as client:
        txid = client.submit(CALL)

    assert txid == f"0x{TXID}"
    assert signer.requests[0].nonce == 12
    assert signer.requests[0].fee == 2_000
    assert posted[0].url.path == "/v2/transactions"
    assert posted[0].headers["content-type"] == "application/octet-stream"
    assert posted[0].content == b"\x80\x80\x00\x00\x00\x00\x01"


def test_node_rejection_is_non_transient_broadcast_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/nonces"):
            return httpx.Response(200, json={"possible_next_nonce": 0})
        return httpx.Response(
            400,
            json={"error": "transaction rejected", "reason": "ConflictingNonceInMempool"},
        )

    with _client(handler, signer=_StubSigner()) as client:
        with pytest.raises(BroadcastError) as error_info:
            client.submit(CALL)

    assert error_info.value.transient is False
    assert error_info.value.reason == "ConflictingNonceInMempool"


def test_server_error_is_transient_broadcast_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream unavailable")

    with _client(handler) as client, pytest.raises(BroadcastError) as error_info:
        client.broadcast_raw(b"\x00")

    assert error_info.value.transient is True


def test_signer_failure_becomes_broadcast_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"possible_next_nonce": 0})

    signer = _StubSigner(SignerError("Signer exited with code 1", transient=False))
    with _client(handler, signer=signer) as client, pytest.raises(BroadcastError, match="Signing"):
        client.submit(CALL)


def test_submit_without_signer_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with _client(handler) as client, pytest.raises(BroadcastError, match="No transaction signer"):
        client.submit(CALL)


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"tx_status": "success"}, TxStatus.SUCCESS),
        ({"tx_status": "pending"}, TxStatus.PENDING),
        ({"tx_status": "abort_by_response"}, TxStatus.ABORT_BY_RESPONSE),
        ({"tx_status": "abort_by_post_condition"}, TxStatus.ABORT_BY_POST_CONDITION),
        ({"tx_status": "dropped_replace_by_fee"}, TxStatus.DROPPED),
        ({"tx_status": "something_new"}, TxStatus.UNKNOWN),
    ],
)
def test_get_status_maps_node_states(payload: dict, expected: TxStatus) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/extended/v1/tx/0x{TXID}"
        return httpx.Response(200, json=payload)

    with _client(handler) as client:
        assert client.get_status(TXID) is expected


def test_get_status_treats_unknown_txid_as_pending() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "could not find transaction"})

    with _client(handler) as client:
        assert client.get_status(f"0x{TXID}") is TxStatus.PENDING


def test_get_status_server_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with _client(handler) as client, pytest.raises(LedgerQueryError, match="HTTP 500"):
        client.get_status(TXID)
