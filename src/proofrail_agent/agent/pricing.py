"""Pyth Hermes price gate for the eligibility policy."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from proofrail_agent.ledger.models import Job

logger = logging.getLogger(__name__)


class PriceGateError(RuntimeError):
    """Price data could not be fetched or parsed."""


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """One Pyth price update, fixed-point with exponent ``expo``."""

    price: int
    confidence: int
    expo: int
    publish_time: int

    @property
    def confidence_ratio(self) -> float:
        return self.confidence / self.price if self.price > 0 else float("inf")


class PythPriceGate:
    """Accepts while the feed is fresh, positive, and tight enough."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_url: str,
        feed_id: str,
        max_age_seconds: int = 60,
        max_confidence_ratio: float = 0.02,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_url = api_url
        self.feed_id = feed_id
        self.max_age_seconds = max_age_seconds
        self.max_confidence_ratio = max_confidence_ratio
        self._clock = clock
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def close(self) -> None:
        self._client.close()

    def validate(self, job: Job) -> bool:
        quote = self.fetch_quote()
        age = self._clock() - quote.publish_time
        if quote.price <= 0:
            logger.info(
                "Price gate: non-positive price %d",
                quote.price,
                extra={"job_id": job.job_id},
            )
            return False
        if age > self.max_age_seconds:
            logger.info("Price gate: stale price (%.0fs old)", age, extra={"job_id": job.job_id})
            return False
        if quote.confidence_ratio > self.max_confidence_ratio:
            logger.info(
                "Price gate: confidence ratio %.4f above %.4f",
                quote.confidence_ratio,
                self.max_confidence_ratio,
                extra={"job_id": job.job_id},
            )
            return False
        return True

    def fetch_quote(self) -> PriceQuote:
        try:
            response = self._client.get(self.api_url, params={"ids[]": self.feed_id})
        except httpx.HTTPError as error:
            raise PriceGateError(f"Pyth request failed: {error}") from error
        if not response.is_success:
            raise PriceGateError(f"Pyth API error: HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as error:
            raise PriceGateError("Pyth API returned invalid JSON") from error
        return _parse_quote(payload)


def _parse_quote(payload: Any) -> PriceQuote:  # noqa: ANN401
    parsed = payload.get("parsed") if isinstance(payload, dict) else None
    if not isinstance(parsed, list) or not parsed or not isinstance(parsed[0], dict):
        raise PriceGateError("Pyth payload has no parsed price updates")
    price = parsed[0].get("price")
    if not isinstance(price, dict):
        raise PriceGateError("Pyth payload is missing the price object")
    try:
        return PriceQuote(
            price=int(price["price"]),
            confidence=int(price["conf"]),
            expo=int(price["expo"]),
            publish_time=int(price["publish_time"]),
        )
    except (KeyError, TypeError, ValueError) as error:
        raise PriceGateError(f"Malformed Pyth price object: {error}") from error
