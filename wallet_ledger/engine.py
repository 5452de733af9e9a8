"""
Ledger Engine Module

Executes the money movements (deposit, transfer, purchase) as atomic units
against a LedgerStore and serves balance and history reads. Each movement
validates its input first, then locks, checks, writes balances and appends
entries inside one ``store.atomic()`` block.
"""

import base64
import binascii
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .config import WalletConfig, get_config
from .errors import (
    ConversionUnavailableError, InsufficientFundsError, LedgerError,
    NotFoundError, ValidationError
)
from .ledger import Account, BalanceResult, EntryKind, HistoryPage, PurchaseResult
from .logging_config import get_logger, log_action
from .money import convert_amount, normalize_currency, parse_amount
from .rates import RateSource
from .storage import LedgerStore


def encode_cursor(seq: int) -> str:
    """Opaque continuation token for history paging"""
    return base64.urlsafe_b64encode(f"seq:{seq}".encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> int:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode()).decode()
        prefix, _, value = raw.partition(":")
        seq = int(value)
    except (binascii.Error, UnicodeError, ValueError):
        raise ValidationError("Invalid cursor")
    if prefix != "seq" or seq <= 0:
        raise ValidationError("Invalid cursor")
    return seq


class LedgerEngine:
    """
    Custodial wallet ledger engine

    Holds no state of its own beyond the store and rate source handles, so a
    single instance is safe to share across request threads.
    """

    def __init__(
        self,
        store: LedgerStore,
        rate_source: RateSource,
        config: Optional[WalletConfig] = None
    ):
        self.store = store
        self.rate_source = rate_source
        self.config = config or get_config()
        self.base_currency = normalize_currency(self.config.base_currency)
        self.logger = get_logger("wallet.engine")

    def _rejected(self, action: str, account_id: str, error: LedgerError, **extra: Any) -> None:
        log_action(
            self.logger, "warning", f"{action} rejected: {error}",
            user_id=account_id, action=action, resource=f"account:{account_id}",
            extra={"error": type(error).__name__, **extra}
        )

    def open_account(self, username: str) -> Account:
        """
        Create a zero-balance account

        Raises:
            ValidationError: If the username is empty or already taken
        """
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("Username required")

        account = self.store.create_account(username.strip())
        log_action(
            self.logger, "info", "Account opened",
            user_id=account.id, action="open_account", resource=f"account:{account.id}",
            extra={"username": account.username}
        )
        return account

    def deposit(self, account_id: str, amount: Any) -> Decimal:
        """
        Credit an account from outside the ledger

        Args:
            account_id: Authenticated account
            amount: Raw amount from the caller

        Returns:
            New balance

        Raises:
            ValidationError: Bad amount
            NotFoundError: Unknown account
            StorageError: The unit was rolled back
        """
        try:
            value = parse_amount(amount, max_amount=self.config.max_amount)

            with self.store.atomic() as unit:
                unit.lock_accounts([account_id])
                balance = unit.get_balance(account_id)
                if balance is None:
                    raise NotFoundError("Account not found")

                new_balance = balance + value
                unit.set_balance(account_id, new_balance)
                unit.append_entry(account_id, EntryKind.CREDIT, value, new_balance)

        except LedgerError as e:
            self._rejected("deposit", account_id, e, amount=str(amount))
            raise

        log_action(
            self.logger, "info", "Deposit completed",
            user_id=account_id, action="deposit", resource=f"account:{account_id}",
            extra={"amount": str(value), "balance": str(new_balance)}
        )
        return new_balance

    def transfer(self, sender_id: str, recipient_username: str, amount: Any) -> Decimal:
        """
        Move funds from the sender to the account named by recipient_username

        Both rows are locked in ascending id order so that opposing transfers
        cannot deadlock. The funds check runs before the recipient existence
        check.

        Returns:
            Sender's new balance

        Raises:
            ValidationError: Bad amount, empty recipient, or self-transfer
            InsufficientFundsError: Sender balance below amount
            NotFoundError: Unknown sender or recipient
            StorageError: The unit was rolled back
        """
        try:
            if not isinstance(recipient_username, str) or not recipient_username.strip():
                raise ValidationError("Recipient required")
            value = parse_amount(amount, max_amount=self.config.max_amount)

            # Ids never change once assigned, so resolving outside the unit is safe
            recipient_id = self.store.find_account_id(recipient_username.strip())
            if recipient_id == sender_id:
                raise ValidationError("Cannot transfer to the same account")

            with self.store.atomic() as unit:
                unit.lock_accounts([sender_id] + ([recipient_id] if recipient_id else []))

                sender_balance = unit.get_balance(sender_id)
                if sender_balance is None:
                    raise NotFoundError("Account not found")
                if sender_balance < value:
                    raise InsufficientFundsError(sender_balance, value)

                recipient_balance = unit.get_balance(recipient_id) if recipient_id else None
                if recipient_balance is None:
                    raise NotFoundError("Recipient not found")

                new_sender_balance = sender_balance - value
                new_recipient_balance = recipient_balance + value
                unit.set_balance(sender_id, new_sender_balance)
                unit.set_balance(recipient_id, new_recipient_balance)
                unit.append_entry(sender_id, EntryKind.DEBIT, value, new_sender_balance)
                unit.append_entry(recipient_id, EntryKind.CREDIT, value, new_recipient_balance)

        except LedgerError as e:
            self._rejected("transfer", sender_id, e, amount=str(amount), to=recipient_username)
            raise

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=sender_id, action="transfer", resource=f"account:{sender_id}",
            extra={
                "amount": str(value),
                "to_account": recipient_id,
                "balance": str(new_sender_balance)
            }
        )
        return new_sender_balance

    def purchase(self, buyer_id: str, product_id: Any) -> PurchaseResult:
        """
        Debit the buyer by a catalog product's price

        The counterparty is the external catalog: no account is credited and
        the sum of balances drops by the price.

        Raises:
            ValidationError: product_id is not a positive integer
            NotFoundError: Unknown product or buyer
            InsufficientFundsError: Buyer balance below price
            StorageError: The unit was rolled back
        """
        try:
            if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
                raise ValidationError("Valid product_id required")

            with self.store.atomic() as unit:
                product = unit.get_product(product_id)
                if product is None:
                    raise NotFoundError("Product not found")
                price = product.price

                unit.lock_accounts([buyer_id])
                balance = unit.get_balance(buyer_id)
                if balance is None:
                    raise NotFoundError("Account not found")
                if balance < price:
                    raise InsufficientFundsError(balance, price)

                new_balance = balance - price
                unit.set_balance(buyer_id, new_balance)
                unit.append_entry(buyer_id, EntryKind.DEBIT, price, new_balance)

        except LedgerError as e:
            self._rejected("purchase", buyer_id, e, product_id=str(product_id))
            raise

        log_action(
            self.logger, "info", "Purchase completed",
            user_id=buyer_id, action="purchase", resource=f"product:{product_id}",
            extra={"price": str(price), "balance": str(new_balance)}
        )
        return PurchaseResult(product_id=product_id, price=price, balance=new_balance)

    def get_balance(self, account_id: str, currency: Optional[str] = None) -> BalanceResult:
        """
        Committed balance, optionally converted out of the base currency

        The rate lookup runs after the read with no store lock held.

        Raises:
            ValidationError: Bad currency code
            NotFoundError: Unknown account
            ConversionUnavailableError: No usable rate for the currency
        """
        target = normalize_currency(currency, default=self.base_currency)

        balance = self.store.get_balance(account_id)
        if balance is None:
            raise NotFoundError("Account not found")

        if target == self.base_currency:
            return BalanceResult(balance=balance, currency=target)

        rate = self.rate_source.get_rate(self.base_currency, target)
        try:
            converted = convert_amount(balance, rate)
        except InvalidOperation as e:
            self.logger.warning(f"Rate {self.base_currency}->{target} out of range: {rate}")
            raise ConversionUnavailableError(f"Rate for {target} out of range") from e
        return BalanceResult(balance=converted, currency=target)

    def get_history(
        self,
        account_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None
    ) -> HistoryPage:
        """
        One page of the account's entries, newest first

        Args:
            account_id: Authenticated account
            limit: Page size, defaults to history_page_size and is capped at
                history_max_page_size
            cursor: next_cursor from the previous page

        Raises:
            ValidationError: Non-positive limit or malformed cursor
        """
        if limit is None:
            limit = self.config.history_page_size
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError("Limit must be a positive integer")
        limit = min(limit, self.config.history_max_page_size)

        before_seq = decode_cursor(cursor) if cursor else None

        # One extra row tells us whether another page exists
        entries = self.store.list_entries(account_id, limit + 1, before_seq=before_seq)
        next_cursor = None
        if len(entries) > limit:
            entries = entries[:limit]
            next_cursor = encode_cursor(entries[-1].seq)

        return HistoryPage(entries=entries, next_cursor=next_cursor)
