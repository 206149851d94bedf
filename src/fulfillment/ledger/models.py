"""Commission account and transaction models.

Amounts are whole FCFA. Commission rates are percentages (10.0 = 10%).
"""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Self
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

MINIMUM_RECHARGE_FCFA = 10_000


class DriverType(str, Enum):
    PARTNER = "partner"
    INTERNAL = "internal"


class TransactionType(str, Enum):
    RECHARGE = "recharge"
    DEDUCTION = "deduction"
    REFUND = "refund"

    @property
    def sign(self) -> int:
        return -1 if self is TransactionType.DEDUCTION else 1


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    ORANGE_MONEY = "orange_money"
    WAVE = "wave"
    MOBILE_MONEY = "mobile_money"
    ADMIN_MANUAL = "admin_manual"


def to_fcfa(value: Any) -> int:
    """Round a price or amount to whole FCFA, half away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def commission_for(order_price: float, commission_rate: float) -> int:
    """Commission owed on an order: round(price * rate%)."""
    amount = Decimal(str(order_price)) * Decimal(str(commission_rate)) / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CommissionAccount(BaseModel):
    """Local view of a driver's prepaid commission balance."""

    driver_id: str
    driver_type: DriverType = DriverType.PARTNER
    balance: int = 0
    minimum_balance: int = MINIMUM_RECHARGE_FCFA
    commission_rate: float = Field(default=10.0, ge=0.0, le=100.0)
    is_suspended: bool = False
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("balance", "minimum_balance", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> int:
        return to_fcfa(v)

    @model_validator(mode="after")
    def enforce_suspension(self) -> Self:
        if self.driver_type == DriverType.PARTNER and self.balance <= 0:
            self.is_suspended = True
        return self

    @property
    def is_partner(self) -> bool:
        return self.driver_type == DriverType.PARTNER


class CommissionTransaction(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    driver_id: str | None = None
    type: TransactionType
    amount: int = Field(ge=0)
    balance_before: int
    balance_after: int
    order_id: str | None = None
    payment_method: PaymentMethod | None = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("amount", "balance_before", "balance_after", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> int:
        return to_fcfa(v)

    @model_validator(mode="after")
    def validate_balances(self) -> Self:
        expected = self.balance_before + self.type.sign * self.amount
        if self.balance_after != expected:
            raise ValueError(
                f"balance_after {self.balance_after} does not match "
                f"{self.balance_before} {'-' if self.type.sign < 0 else '+'} {self.amount}"
            )
        if self.type == TransactionType.DEDUCTION and not self.order_id:
            raise ValueError("A deduction must reference an order_id")
        return self


class BalanceSnapshot(BaseModel):
    """Payload of GET balance(driverId)."""

    balance: int
    minimum_balance: int = MINIMUM_RECHARGE_FCFA
    commission_rate: float
    is_suspended: bool
    last_updated: datetime | None = None

    @field_validator("balance", "minimum_balance", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> int:
        return to_fcfa(v)


class BalanceAlerts(BaseModel):
    low_balance: bool = False
    very_low_balance: bool = False
    suspended: bool = False

    @classmethod
    def from_balance(
        cls, balance: int, low_threshold: int = 3000, very_low_threshold: int = 1000
    ) -> "BalanceAlerts":
        return cls(
            low_balance=0 < balance <= low_threshold,
            very_low_balance=0 < balance <= very_low_threshold,
            suspended=balance <= 0,
        )
