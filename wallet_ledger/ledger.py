"""
Ledger Records

Accounts, append-only ledger entries, catalog products and the result records
returned by the engine. Every entry carries the balance its account had right
after the write, so an account's history replays its full balance trajectory.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class EntryKind(Enum):
    """Direction of a ledger entry relative to its account"""
    CREDIT = "credit"  # Balance goes up
    DEBIT = "debit"    # Balance goes down


@dataclass
class Account:
    """Custodial account holding a base-currency balance"""
    id: str
    username: str
    balance: Decimal
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "balance": str(self.balance),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class LedgerEntry:
    """
    Immutable record of one balance movement on one account

    A transfer writes two of these (debit on the sender, credit on the
    recipient); deposits and purchases write one.
    """
    id: str
    account_id: str
    kind: EntryKind
    amount: Decimal
    resulting_balance: Decimal
    timestamp: datetime
    seq: int = 0  # Store-assigned insertion order

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError("Ledger entry amount must be positive")
        if self.resulting_balance < 0:
            raise ValueError("Ledger entry cannot record a negative balance")

    def to_history_item(self) -> Dict[str, Any]:
        """Projection returned by history reads"""
        return {
            "kind": self.kind.value,
            "amount": str(self.amount),
            "resulting_balance": str(self.resulting_balance),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Product:
    """Catalog item; the engine only ever reads its price"""
    id: int
    name: str
    price: Decimal
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "description": self.description,
        }


@dataclass(frozen=True)
class BalanceResult:
    balance: Decimal
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return {"balance": str(self.balance), "currency": self.currency}


@dataclass(frozen=True)
class PurchaseResult:
    product_id: int
    price: Decimal
    balance: Decimal
    message: str = "Product purchased"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "product_id": self.product_id,
            "price": str(self.price),
            "balance": str(self.balance),
        }


@dataclass
class HistoryPage:
    """One page of an account's history, newest first"""
    entries: List[LedgerEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [entry.to_history_item() for entry in self.entries],
            "next_cursor": self.next_cursor,
        }
