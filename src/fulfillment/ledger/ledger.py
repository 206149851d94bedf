"""Prepaid commission bookkeeping for partner drivers.

Partner drivers prepay commission. Each completed delivery deducts a
percentage of the order price; a balance at or below zero suspends the
account, which blocks new acceptances but never an order in progress.
Internal drivers are neither gated nor charged.

The order id is the idempotency key for deductions: an order is never
charged twice. The local ledger is a cache of the server's books and can
be overwritten from server payloads at any time without side effects.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from fulfillment.core.exceptions import (
    AccountNotFoundError,
    AlreadyDeductedError,
    BelowMinimumError,
    LedgerError,
    TransactionStateError,
)
from fulfillment.ledger.models import (
    BalanceAlerts,
    BalanceSnapshot,
    CommissionAccount,
    CommissionTransaction,
    DriverType,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
    commission_for,
)
from fulfillment.settings import CommissionSettings

logger = logging.getLogger(__name__)


def mask_id(value: str) -> str:
    return value[:8] + "..." if len(value) > 8 else value


class CommissionLedger:
    def __init__(self, settings: CommissionSettings | None = None) -> None:
        self.settings = settings or CommissionSettings()
        self._accounts: dict[str, CommissionAccount] = {}
        self._transactions: dict[str, list[CommissionTransaction]] = {}
        self._by_id: dict[str, CommissionTransaction] = {}
        self._deducted_orders: dict[str, str] = {}
        self._refunded_orders: set[str] = set()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def open_account(
        self,
        driver_id: str,
        driver_type: DriverType = DriverType.PARTNER,
        commission_rate: float | None = None,
        balance: int = 0,
    ) -> CommissionAccount:
        """Create (or replace) the local account for a driver."""
        account = CommissionAccount(
            driver_id=driver_id,
            driver_type=driver_type,
            balance=balance,
            minimum_balance=self.settings.minimum_recharge,
            commission_rate=(
                commission_rate if commission_rate is not None else self.settings.default_rate
            ),
        )
        self._accounts[driver_id] = account
        self._transactions.setdefault(driver_id, [])
        logger.info(
            f"Commission account opened for {mask_id(driver_id)} "
            f"({driver_type.value}, rate {account.commission_rate}%)"
        )
        return account

    def account(self, driver_id: str) -> CommissionAccount:
        try:
            return self._accounts[driver_id]
        except KeyError:
            raise AccountNotFoundError(
                f"No commission account for driver {mask_id(driver_id)}",
                {"driver_id": driver_id},
            ) from None

    def has_account(self, driver_id: str) -> bool:
        return driver_id in self._accounts

    def can_accept_order(self, driver_id: str) -> bool:
        """False iff the driver's account is suspended. Unknown drivers cannot accept."""
        account = self._accounts.get(driver_id)
        if account is None:
            logger.warning(f"No commission account for {mask_id(driver_id)}, refusing acceptance")
            return False
        if not account.is_partner:
            return True
        return not account.is_suspended

    def alerts(self, driver_id: str) -> BalanceAlerts:
        account = self.account(driver_id)
        if not account.is_partner:
            return BalanceAlerts()
        return BalanceAlerts.from_balance(
            account.balance,
            low_threshold=self.settings.low_balance_threshold,
            very_low_threshold=self.settings.very_low_balance_threshold,
        )

    def transactions(self, driver_id: str, limit: int = 50) -> list[CommissionTransaction]:
        """Most recent transactions first."""
        history = self._transactions.get(driver_id, [])
        return list(reversed(history))[:limit]

    def transaction(self, transaction_id: str) -> CommissionTransaction:
        try:
            return self._by_id[transaction_id]
        except KeyError:
            raise TransactionStateError(
                f"Unknown transaction {transaction_id}", {"transaction_id": transaction_id}
            ) from None

    def is_deducted(self, order_id: str) -> bool:
        return order_id in self._deducted_orders

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------
    def post_deduction(
        self, driver_id: str, order_id: str, order_price: float
    ) -> CommissionTransaction | None:
        """Charge commission for a completed order. Returns None for internal drivers."""
        account = self.account(driver_id)
        if not account.is_partner:
            return None

        if order_id in self._deducted_orders:
            raise AlreadyDeductedError(
                f"Order {order_id} already has a commission deduction",
                {"order_id": order_id, "transaction_id": self._deducted_orders[order_id]},
            )

        amount = commission_for(order_price, account.commission_rate)
        before = account.balance
        after = before - amount

        tx = CommissionTransaction(
            driver_id=driver_id,
            type=TransactionType.DEDUCTION,
            amount=amount,
            balance_before=before,
            balance_after=after,
            order_id=order_id,
            status=TransactionStatus.COMPLETED,
        )
        self._set_balance(account, after)
        self._record(tx)
        self._deducted_orders[order_id] = tx.id

        logger.info(
            f"Commission deducted for {mask_id(driver_id)}: {amount} FCFA "
            f"(order {order_id}, new balance: {after} FCFA)"
        )
        self._log_alerts(driver_id, account)
        return tx

    def post_recharge(
        self, driver_id: str, amount: int, method: PaymentMethod | str
    ) -> CommissionTransaction:
        """Open a pending recharge awaiting payment confirmation."""
        account = self.account(driver_id)
        if amount < self.settings.minimum_recharge:
            raise BelowMinimumError(
                f"Minimum recharge is {self.settings.minimum_recharge} FCFA, got {amount}",
                {"amount": amount, "minimum": self.settings.minimum_recharge},
            )

        tx = CommissionTransaction(
            driver_id=driver_id,
            type=TransactionType.RECHARGE,
            amount=amount,
            balance_before=account.balance,
            balance_after=account.balance + amount,
            payment_method=PaymentMethod(method),
            status=TransactionStatus.PENDING,
        )
        self._record(tx)
        logger.info(
            f"Recharge of {amount} FCFA requested for {mask_id(driver_id)} via {tx.payment_method.value}"
        )
        return tx

    def confirm_recharge(self, transaction_id: str) -> CommissionTransaction:
        """Payment confirmed: credit the balance and lift the suspension if covered."""
        tx = self._pending_recharge(transaction_id)
        account = self.account(tx.driver_id)

        tx.balance_before = account.balance
        tx.balance_after = account.balance + tx.amount
        tx.status = TransactionStatus.COMPLETED
        self._set_balance(account, tx.balance_after)

        logger.info(
            f"Recharge confirmed for {mask_id(tx.driver_id)}: +{tx.amount} FCFA "
            f"(new balance: {account.balance} FCFA)"
        )
        return tx

    def fail_recharge(self, transaction_id: str) -> CommissionTransaction:
        tx = self._pending_recharge(transaction_id)
        tx.status = TransactionStatus.FAILED
        logger.warning(f"Recharge {transaction_id} failed for {mask_id(tx.driver_id)}")
        return tx

    def post_refund(self, driver_id: str, order_id: str) -> CommissionTransaction:
        """Credit back the commission deducted for an order, at most once."""
        account = self.account(driver_id)
        deduction_id = self._deducted_orders.get(order_id)
        if deduction_id is None:
            raise TransactionStateError(
                f"Order {order_id} has no deduction to refund", {"order_id": order_id}
            )
        if order_id in self._refunded_orders:
            raise TransactionStateError(
                f"Order {order_id} commission already refunded", {"order_id": order_id}
            )

        deduction = self._by_id[deduction_id]
        if deduction.driver_id != driver_id:
            raise LedgerError(
                f"Order {order_id} was not charged to this driver",
                {"order_id": order_id, "driver_id": driver_id},
            )

        tx = CommissionTransaction(
            driver_id=driver_id,
            type=TransactionType.REFUND,
            amount=deduction.amount,
            balance_before=account.balance,
            balance_after=account.balance + deduction.amount,
            order_id=order_id,
            status=TransactionStatus.COMPLETED,
        )
        self._set_balance(account, tx.balance_after)
        self._record(tx)
        self._refunded_orders.add(order_id)
        logger.info(
            f"Commission refunded for {mask_id(driver_id)}: +{tx.amount} FCFA (order {order_id})"
        )
        return tx

    # ------------------------------------------------------------------
    # Server sync
    # ------------------------------------------------------------------
    def apply_balance_snapshot(self, driver_id: str, snapshot: BalanceSnapshot) -> CommissionAccount:
        """Overwrite the cached balance with the server's figures."""
        existing = self._accounts.get(driver_id)
        account = CommissionAccount(
            driver_id=driver_id,
            driver_type=existing.driver_type if existing else DriverType.PARTNER,
            balance=snapshot.balance,
            minimum_balance=snapshot.minimum_balance,
            commission_rate=snapshot.commission_rate,
            is_suspended=snapshot.is_suspended,
            last_updated=snapshot.last_updated or datetime.now(UTC),
        )
        self._accounts[driver_id] = account
        self._transactions.setdefault(driver_id, [])
        return account

    def apply_transactions(
        self, driver_id: str, transactions: Iterable[CommissionTransaction]
    ) -> None:
        """Replace the cached history for a driver; rebuilds the idempotency index."""
        for old in self._transactions.get(driver_id, []):
            self._by_id.pop(old.id, None)
            if old.order_id and self._deducted_orders.get(old.order_id) == old.id:
                del self._deducted_orders[old.order_id]
            if old.order_id and old.type == TransactionType.REFUND:
                self._refunded_orders.discard(old.order_id)

        history = sorted(transactions, key=lambda tx: tx.created_at)
        self._transactions[driver_id] = []
        for tx in history:
            if tx.driver_id is None:
                tx.driver_id = driver_id
            self._record(tx)
            if tx.status != TransactionStatus.COMPLETED or not tx.order_id:
                continue
            if tx.type == TransactionType.DEDUCTION:
                self._deducted_orders[tx.order_id] = tx.id
            elif tx.type == TransactionType.REFUND:
                self._refunded_orders.add(tx.order_id)

    # ------------------------------------------------------------------
    def _record(self, tx: CommissionTransaction) -> None:
        self._transactions.setdefault(tx.driver_id, []).append(tx)
        self._by_id[tx.id] = tx

    def _set_balance(self, account: CommissionAccount, balance: int) -> None:
        was_suspended = account.is_suspended
        account.balance = balance
        account.is_suspended = account.is_partner and balance <= 0
        account.last_updated = datetime.now(UTC)
        if account.is_suspended and not was_suspended:
            logger.warning(
                f"Commission account suspended for {mask_id(account.driver_id)}: "
                f"balance = {balance} FCFA"
            )
        elif was_suspended and not account.is_suspended:
            logger.info(f"Commission account reactivated for {mask_id(account.driver_id)}")

    def _pending_recharge(self, transaction_id: str) -> CommissionTransaction:
        tx = self.transaction(transaction_id)
        if tx.type != TransactionType.RECHARGE or tx.status != TransactionStatus.PENDING:
            raise TransactionStateError(
                f"Transaction {transaction_id} is not a pending recharge",
                {"transaction_id": transaction_id, "status": tx.status.value},
            )
        return tx

    def _log_alerts(self, driver_id: str, account: CommissionAccount) -> None:
        alerts = self.alerts(driver_id)
        if alerts.suspended:
            return
        if alerts.very_low_balance:
            logger.warning(f"Very low commission balance for {mask_id(driver_id)}: {account.balance} FCFA")
        elif alerts.low_balance:
            logger.info(f"Low commission balance for {mask_id(driver_id)}: {account.balance} FCFA")
