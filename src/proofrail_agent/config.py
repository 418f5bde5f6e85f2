"""Runtime configuration for the executor agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from proofrail_agent.ledger.c32 import C32AddressError, c32_address, c32_address_decode
from proofrail_agent.ledger.models import ContractId

SUPPORTED_NETWORKS = ("testnet", "mainnet", "devnet")
DEFAULT_API_URLS = {
    "mainnet": "https://api.hiro.so",
    "testnet": "https://api.testnet.hiro.so",
    "devnet": "http://localhost:3999",
}
DEFAULT_DEPLOYER = "STC5KHM41H6WHAST7MWWDD807YSPRQKJ68T330BQ"
DEFAULT_PYTH_API_URL = "https://hermes.pyth.network/v2/updates/price/latest"
DEFAULT_CLAIM_FEE_FUNCTION = "claim-fee"


class PriceFailurePolicy(str, Enum):
    """What eligibility does when the price gate itself errors."""

    FAIL_OPEN = "fail-open"
    FAIL_CLOSED = "fail-closed"


@dataclass(frozen=True, slots=True)
class NetworkSettings:
    """Network selection and node endpoint."""

    network: str = "testnet"
    api_url: str = DEFAULT_API_URLS["testnet"]
    http_timeout_seconds: float = 30.0


@dataclass(frozen=True, slots=True)
class AgentSettings:
    """Agent identity and signer wiring."""

    agent_address: str = ""
    signer_command: str = ""
    signer_timeout_seconds: float = 30.0
    tx_fee: int = 1_000


@dataclass(frozen=True, slots=True)
class ContractSettings:
    """Contract identities involved in execution and fee claims."""

    escrow: str = f"{DEFAULT_DEPLOYER}.job-escrow"
    router: str = f"{DEFAULT_DEPLOYER}.job-router"
    input_token: str = f"{DEFAULT_DEPLOYER}.mock-usdcx"
    output_token: str = f"{DEFAULT_DEPLOYER}.mock-alex"
    swap_helper: str = f"{DEFAULT_DEPLOYER}.mock-swap-helper"
    staking: str = f"{DEFAULT_DEPLOYER}.mock-alex-staking-v2"
    pyth_oracle: str | None = None
    claim_fee_function: str = DEFAULT_CLAIM_FEE_FUNCTION

    def contract_id(self, name: str) -> ContractId:
        return ContractId.parse(getattr(self, name))


@dataclass(frozen=True, slots=True)
class MonitoringSettings:
    """Polling cadence and job selection thresholds."""

    poll_interval_ms: int = 30_000
    min_fee_amount: int = 10_000
    scan_window: int = 100
    expiry_margin_blocks: int = 5
    reclaim_fees: bool = True


@dataclass(frozen=True, slots=True)
class SubmissionSettings:
    """Broadcast retry policy."""

    max_retries: int = 3
    base_delay_ms: int = 1_000


@dataclass(frozen=True, slots=True)
class ConfirmationSettings:
    """Confirmation polling bounds."""

    max_wait_blocks: int = 10
    poll_interval_ms: int = 5_000


@dataclass(frozen=True, slots=True)
class PriceValidationSettings:
    """Optional price gate consulted during eligibility."""

    enabled: bool = False
    failure_policy: PriceFailurePolicy = PriceFailurePolicy.FAIL_OPEN
    api_url: str = DEFAULT_PYTH_API_URL
    feed_id: str = ""
    max_age_seconds: int = 60
    max_confidence_ratio: float = 0.02


@dataclass(frozen=True, slots=True)
class Settings:
    """Application settings grouped by concern. Read-only after construction."""

    db_path: Path = Path(".proofrail_agent.db")
    sqlite_busy_timeout_ms: int = 5_000
    network: NetworkSettings = field(default_factory=NetworkSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    contracts: ContractSettings = field(default_factory=ContractSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    submission: SubmissionSettings = field(default_factory=SubmissionSettings)
    confirmation: ConfirmationSettings = field(default_factory=ConfirmationSettings)
    price_validation: PriceValidationSettings = field(default_factory=PriceValidationSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from ``PROOFRAIL_*`` environment variables."""

        network = os.getenv("PROOFRAIL_NETWORK", "testnet").strip().lower()
        return cls(
            db_path=db_path or Path(os.getenv("PROOFRAIL_DB_PATH", ".proofrail_agent.db")),
            sqlite_busy_timeout_ms=int(os.getenv("PROOFRAIL_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            network=NetworkSettings(
                network=network,
                api_url=os.getenv("PROOFRAIL_API_URL", "").strip()
                or DEFAULT_API_URLS.get(network, DEFAULT_API_URLS["testnet"]),
                http_timeout_seconds=float(os.getenv("PROOFRAIL_HTTP_TIMEOUT_SECONDS", "30.0")),
            ),
            agent=AgentSettings(
                agent_address=_canonical_address(os.getenv("PROOFRAIL_AGENT_ADDRESS", "")),
                signer_command=os.getenv("PROOFRAIL_SIGNER_COMMAND", "").strip(),
                signer_timeout_seconds=float(
                    os.getenv("PROOFRAIL_SIGNER_TIMEOUT_SECONDS", "30.0"),
                ),
                tx_fee=int(os.getenv("PROOFRAIL_TX_FEE", "1000")),
            ),
            contracts=ContractSettings(
                escrow=_env_contract("PROOFRAIL_CONTRACT_ESCROW", "job-escrow"),
                router=_env_contract("PROOFRAIL_CONTRACT_ROUTER", "job-router"),
                input_token=_env_contract("PROOFRAIL_CONTRACT_INPUT_TOKEN", "mock-usdcx"),
                output_token=_env_contract("PROOFRAIL_CONTRACT_OUTPUT_TOKEN", "mock-alex"),
                swap_helper=_env_contract("PROOFRAIL_CONTRACT_SWAP_HELPER", "mock-swap-helper"),
                staking=_env_contract("PROOFRAIL_CONTRACT_STAKING", "mock-alex-staking-v2"),
                pyth_oracle=os.getenv("PROOFRAIL_CONTRACT_PYTH_ORACLE", "").strip() or None,
                claim_fee_function=os.getenv("PROOFRAIL_CLAIM_FEE_FUNCTION", "").strip()
                or DEFAULT_CLAIM_FEE_FUNCTION,
            ),
            monitoring=MonitoringSettings(
                poll_interval_ms=int(os.getenv("PROOFRAIL_POLL_INTERVAL_MS", "30000")),
                min_fee_amount=int(os.getenv("PROOFRAIL_MIN_FEE_AMOUNT", "10000")),
                scan_window=int(os.getenv("PROOFRAIL_SCAN_WINDOW", "100")),
                expiry_margin_blocks=int(os.getenv("PROOFRAIL_EXPIRY_MARGIN_BLOCKS", "5")),
                reclaim_fees=_env_bool("PROOFRAIL_RECLAIM_FEES", default=True),
            ),
            submission=SubmissionSettings(
                max_retries=int(os.getenv("PROOFRAIL_SUBMIT_MAX_RETRIES", "3")),
                base_delay_ms=int(os.getenv("PROOFRAIL_SUBMIT_BASE_DELAY_MS", "1000")),
            ),
            confirmation=ConfirmationSettings(
                max_wait_blocks=int(os.getenv("PROOFRAIL_CONFIRM_MAX_WAIT_BLOCKS", "10")),
                poll_interval_ms=int(os.getenv("PROOFRAIL_CONFIRM_POLL_INTERVAL_MS", "5000")),
            ),
            price_validation=PriceValidationSettings(
                enabled=_env_bool("PROOFRAIL_PRICE_VALIDATION_ENABLED", default=False),
                failure_policy=_env_failure_policy(),
                api_url=os.getenv("PROOFRAIL_PYTH_API_URL", DEFAULT_PYTH_API_URL).strip(),
                feed_id=os.getenv("PROOFRAIL_PYTH_FEED_ID", "").strip(),
                max_age_seconds=int(os.getenv("PROOFRAIL_PRICE_MAX_AGE_SECONDS", "60")),
                max_confidence_ratio=float(
                    os.getenv("PROOFRAIL_PRICE_MAX_CONFIDENCE_RATIO", "0.02"),
                ),
            ),
        )

    def validate(self, *, require_signer: bool = True) -> None:
        """Raise ``ValueError`` describing the first invalid setting."""

        if self.network.network not in SUPPORTED_NETWORKS:
            raise ValueError(
                f"PROOFRAIL_NETWORK must be one of {', '.join(SUPPORTED_NETWORKS)}: "
                f"{self.network.network!r}",
            )
        _validate_http_url(self.network.api_url, name="PROOFRAIL_API_URL")
        if not self.agent.agent_address:
            raise ValueError("PROOFRAIL_AGENT_ADDRESS is required.")
        try:
            canonical = c32_address(*c32_address_decode(self.agent.agent_address))
        except C32AddressError as error:
            raise ValueError(f"PROOFRAIL_AGENT_ADDRESS is invalid: {error}") from error
        # Decoded job principals are always canonical; a variant spelling never matches them.
        if canonical != self.agent.agent_address:
            raise ValueError(
                f"PROOFRAIL_AGENT_ADDRESS must be in canonical form: {canonical!r}, "
                f"got {self.agent.agent_address!r}",
            )
        if require_signer and not self.agent.signer_command:
            raise ValueError("PROOFRAIL_SIGNER_COMMAND is required to submit transactions.")
        if self.agent.tx_fee <= 0:
            raise ValueError("PROOFRAIL_TX_FEE must be > 0.")

        for name in ("escrow", "router", "input_token", "output_token", "swap_helper", "staking"):
            self.contracts.contract_id(name)
        if not self.contracts.claim_fee_function:
            raise ValueError("PROOFRAIL_CLAIM_FEE_FUNCTION must not be empty.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("PROOFRAIL_SQLITE_BUSY_TIMEOUT_MS must be > 0.")

        if self.monitoring.poll_interval_ms < 0:
            raise ValueError("PROOFRAIL_POLL_INTERVAL_MS must be >= 0.")
        if self.monitoring.min_fee_amount < 0:
            raise ValueError("PROOFRAIL_MIN_FEE_AMOUNT must be >= 0.")
        if self.monitoring.scan_window <= 0:
            raise ValueError("PROOFRAIL_SCAN_WINDOW must be > 0.")
        if self.monitoring.expiry_margin_blocks < 0:
            raise ValueError("PROOFRAIL_EXPIRY_MARGIN_BLOCKS must be >= 0.")
        if self.submission.max_retries <= 0:
            raise ValueError("PROOFRAIL_SUBMIT_MAX_RETRIES must be > 0.")
        if self.submission.base_delay_ms < 0:
            raise ValueError("PROOFRAIL_SUBMIT_BASE_DELAY_MS must be >= 0.")
        if self.confirmation.max_wait_blocks <= 0:
            raise ValueError("PROOFRAIL_CONFIRM_MAX_WAIT_BLOCKS must be > 0.")
        if self.confirmation.poll_interval_ms < 0:
            raise ValueError("PROOFRAIL_CONFIRM_POLL_INTERVAL_MS must be >= 0.")

        if self.price_validation.enabled:
            _validate_http_url(self.price_validation.api_url, name="PROOFRAIL_PYTH_API_URL")
            if not self.price_validation.feed_id:
                raise ValueError(
                    "PROOFRAIL_PYTH_FEED_ID is required when price validation is enabled.",
                )
            if self.price_validation.max_age_seconds <= 0:
                raise ValueError("PROOFRAIL_PRICE_MAX_AGE_SECONDS must be > 0.")
            if self.price_validation.max_confidence_ratio <= 0:
                raise ValueError("PROOFRAIL_PRICE_MAX_CONFIDENCE_RATIO must be > 0.")


def _env_contract(name: str, default_contract_name: str) -> str:
    value = os.getenv(name, "").strip()
    return value or f"{DEFAULT_DEPLOYER}.{default_contract_name}"


def _canonical_address(raw: str) -> str:
    value = raw.strip()
    try:
        return c32_address(*c32_address_decode(value))
    except C32AddressError:
        # Left as given; validate() reports the problem.
        return value


def _env_failure_policy() -> PriceFailurePolicy:
    raw = os.getenv("PROOFRAIL_PRICE_FAILURE_POLICY", PriceFailurePolicy.FAIL_OPEN.value)
    try:
        return PriceFailurePolicy(raw.strip().lower())
    except ValueError as error:
        allowed = ", ".join(policy.value for policy in PriceFailurePolicy)
        raise ValueError(
            f"Invalid PROOFRAIL_PRICE_FAILURE_POLICY: {raw!r}. Expected one of: {allowed}",
        ) from error


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
