"""HTTP client for the commission API.

Responses use a ``{"success": bool, "data": ..., "message": str}`` envelope.
"""

import logging
from typing import Any

import httpx

from fulfillment.core.exceptions import (
    BelowMinimumError,
    NetworkUnavailableError,
    ServiceUnavailableError,
    ValidationError,
)
from fulfillment.core.retry import RetryConfig, with_retry
from fulfillment.ledger.ledger import CommissionLedger
from fulfillment.ledger.models import (
    BalanceSnapshot,
    CommissionAccount,
    CommissionTransaction,
    PaymentMethod,
)
from fulfillment.settings import CommissionSettings

logger = logging.getLogger(__name__)


class CommissionClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        token: str | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self.retry_config = retry_config or RetryConfig()

    @classmethod
    def from_settings(cls, settings: CommissionSettings, token: str | None = None) -> "CommissionClient":
        return cls(settings.api_base_url, timeout=settings.api_timeout_s, token=token)

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers()) as client:
                response = await client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as e:
            raise NetworkUnavailableError(f"Request timed out after {self.timeout}s") from e
        except httpx.NetworkError as e:
            raise NetworkUnavailableError(f"Network error: {e}") from e

        if response.status_code >= 500:
            raise ServiceUnavailableError(
                f"Commission API error: {response.status_code}", {"path": path}
            )

        body = response.json()
        if response.status_code >= 400 or not body.get("success", False):
            raise ValidationError(
                body.get("message") or f"Commission API rejected request: {response.status_code}",
                {"path": path, "status_code": response.status_code},
            )
        return body.get("data")

    async def get_balance(self, driver_id: str) -> BalanceSnapshot:
        data = await with_retry(
            lambda: self._request("GET", f"/commission/{driver_id}/balance"),
            self.retry_config,
            operation_name="commission balance fetch",
        )
        return BalanceSnapshot.model_validate(data)

    async def get_transactions(self, driver_id: str, limit: int = 50) -> list[CommissionTransaction]:
        data = await with_retry(
            lambda: self._request(
                "GET", f"/commission/{driver_id}/transactions", params={"limit": limit}
            ),
            self.retry_config,
            operation_name="commission transactions fetch",
        )
        return [
            CommissionTransaction.model_validate({"driver_id": driver_id, **item})
            for item in data or []
        ]

    async def recharge(
        self,
        driver_id: str,
        amount: int,
        method: PaymentMethod | str,
        minimum: int = 10_000,
    ) -> str:
        """Initiate a recharge and return the server transaction id.

        Not retried: a duplicated POST would open two payments.
        """
        if amount < minimum:
            raise BelowMinimumError(
                f"Minimum recharge is {minimum} FCFA, got {amount}",
                {"amount": amount, "minimum": minimum},
            )
        data = await self._request(
            "POST",
            f"/commission/{driver_id}/recharge",
            json={"amount": amount, "method": PaymentMethod(method).value},
        )
        return str(data["transactionId"])


async def refresh_account(
    ledger: CommissionLedger,
    client: CommissionClient,
    driver_id: str,
    limit: int = 50,
) -> CommissionAccount:
    """Pull balance and history from the server into the local ledger."""
    snapshot = await client.get_balance(driver_id)
    transactions = await client.get_transactions(driver_id, limit=limit)
    account = ledger.apply_balance_snapshot(driver_id, snapshot)
    ledger.apply_transactions(driver_id, transactions)
    logger.info(
        f"Commission ledger refreshed for {driver_id[:8]}: balance {account.balance} FCFA, "
        f"{len(transactions)} transactions"
    )
    return account
