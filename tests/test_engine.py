"""
Tests for the ledger engine: deposits, transfers, purchases, balance and history reads
"""

import pytest
from decimal import Decimal
from unittest.mock import patch

from wallet_ledger.config import WalletConfig
from wallet_ledger.engine import LedgerEngine, decode_cursor, encode_cursor
from wallet_ledger.errors import (
    ConversionUnavailableError, InsufficientFundsError, NotFoundError,
    StorageError, ValidationError
)
from wallet_ledger.ledger import EntryKind
from wallet_ledger.rates import StaticRateSource
from wallet_ledger.storage import InMemoryLedgerStore, SQLiteLedgerStore, _InMemoryUnit, _SQLiteUnit


def make_config(**overrides) -> WalletConfig:
    settings = {
        "database_url": "memory://",
        "max_transaction_amount": "1000000.00",
        "history_page_size": 50,
        "history_max_page_size": 200,
    }
    settings.update(overrides)
    return WalletConfig(**settings)


class _EngineCases:
    """Ledger properties that must hold on every store"""

    unit_class = None

    def make_store(self):
        raise NotImplementedError

    def setup_method(self):
        """Set up test fixtures"""
        self.store = self.make_store()
        self.rates = StaticRateSource({"USD": "0.012", "EUR": "0.011"})
        self.engine = LedgerEngine(self.store, self.rates, make_config())
        self.alice = self.engine.open_account("alice")
        self.bob = self.engine.open_account("bob")

    def teardown_method(self):
        self.store.close()

    def snapshot(self):
        return (
            self.store.get_balance(self.alice.id),
            self.store.get_balance(self.bob.id),
            self.store.count_entries(self.alice.id),
            self.store.count_entries(self.bob.id),
        )

    # Deposit

    def test_deposit_credits_and_records_entry(self):
        """Test deposit returns the new balance and appends one credit entry"""
        assert self.engine.deposit(self.alice.id, "100.50") == Decimal("100.50")
        assert self.engine.deposit(self.alice.id, 20) == Decimal("120.50")

        entries = self.store.list_entries(self.alice.id, 10)
        assert [e.kind for e in entries] == [EntryKind.CREDIT, EntryKind.CREDIT]
        assert entries[0].amount == Decimal("20.00")
        assert entries[0].resulting_balance == Decimal("120.50")

    @pytest.mark.parametrize("amount", [
        None, "", "abc", 0, -5, "10.001", "NaN", "Infinity", True, "1000000.01",
        "1e30", 1e30, "1" * 29,
    ])
    def test_invalid_deposit_changes_nothing(self, amount):
        """Test rejected deposits leave balance and history untouched"""
        self.engine.deposit(self.alice.id, "10")
        before = self.snapshot()

        with pytest.raises(ValidationError):
            self.engine.deposit(self.alice.id, amount)

        assert self.snapshot() == before

    def test_deposit_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.engine.deposit("no-such-account", "10")

    # Transfer

    def test_transfer_moves_funds_with_paired_entries(self):
        """Test a transfer debits the sender and credits the recipient"""
        self.engine.deposit(self.alice.id, "100")

        assert self.engine.transfer(self.alice.id, "bob", "30.25") == Decimal("69.75")
        assert self.store.get_balance(self.bob.id) == Decimal("30.25")

        debit = self.store.list_entries(self.alice.id, 1)[0]
        credit = self.store.list_entries(self.bob.id, 1)[0]
        assert debit.kind == EntryKind.DEBIT
        assert debit.amount == Decimal("30.25")
        assert debit.resulting_balance == Decimal("69.75")
        assert credit.kind == EntryKind.CREDIT
        assert credit.amount == Decimal("30.25")
        assert credit.resulting_balance == Decimal("30.25")

    def test_transfer_conserves_total(self):
        self.engine.deposit(self.alice.id, "100")
        self.engine.deposit(self.bob.id, "50")
        total = self.store.total_balance()

        self.engine.transfer(self.alice.id, "bob", "40")
        self.engine.transfer(self.bob.id, "alice", "90")

        assert self.store.total_balance() == total == Decimal("150.00")

    def test_transfer_entire_balance(self):
        self.engine.deposit(self.alice.id, "100")
        assert self.engine.transfer(self.alice.id, "bob", "100") == Decimal("0.00")

    def test_transfer_insufficient_funds(self):
        """Test an overdraft attempt fails before any write"""
        self.engine.deposit(self.alice.id, "100")
        before = self.snapshot()

        with pytest.raises(InsufficientFundsError) as exc_info:
            self.engine.transfer(self.alice.id, "bob", "100.01")

        assert exc_info.value.available == Decimal("100.00")
        assert exc_info.value.requested == Decimal("100.01")
        assert self.snapshot() == before

    def test_funds_check_precedes_recipient_lookup(self):
        """Test an unfunded transfer to an unknown user reports insufficient funds"""
        with pytest.raises(InsufficientFundsError):
            self.engine.transfer(self.alice.id, "nobody", "10")

    def test_transfer_unknown_recipient(self):
        self.engine.deposit(self.alice.id, "100")
        before = self.snapshot()

        with pytest.raises(NotFoundError):
            self.engine.transfer(self.alice.id, "nobody", "10")

        assert self.snapshot() == before

    def test_self_transfer_rejected(self):
        self.engine.deposit(self.alice.id, "100")
        before = self.snapshot()

        with pytest.raises(ValidationError):
            self.engine.transfer(self.alice.id, "alice", "10")

        assert self.snapshot() == before

    @pytest.mark.parametrize("recipient", [None, "", "   "])
    def test_transfer_requires_recipient(self, recipient):
        self.engine.deposit(self.alice.id, "100")
        with pytest.raises(ValidationError):
            self.engine.transfer(self.alice.id, recipient, "10")

    @pytest.mark.parametrize("amount", [0, -1, "1.234", None, "1e30", "9" * 29])
    def test_transfer_invalid_amount(self, amount):
        self.engine.deposit(self.alice.id, "100")
        before = self.snapshot()
        with pytest.raises(ValidationError):
            self.engine.transfer(self.alice.id, "bob", amount)
        assert self.snapshot() == before

    def test_storage_failure_rolls_back_transfer(self):
        """Test a failure between the two entry appends leaves no trace"""
        self.engine.deposit(self.alice.id, "100")
        before = self.snapshot()

        original = self.unit_class.append_entry
        calls = []

        def failing_append(unit, *args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return original(unit, *args, **kwargs)

        with patch.object(self.unit_class, "append_entry", failing_append):
            with pytest.raises(StorageError):
                self.engine.transfer(self.alice.id, "bob", "40")

        assert len(calls) == 2
        assert self.snapshot() == before

        # Locks were released
        assert self.engine.transfer(self.alice.id, "bob", "40") == Decimal("60.00")

    # Purchase

    def test_purchase_debits_without_counterparty(self):
        """Test a purchase removes the price from the ledger total"""
        product = self.store.add_product("Headphones", Decimal("250.00"), "Wireless")
        self.engine.deposit(self.alice.id, "1000")
        self.engine.deposit(self.bob.id, "10")

        result = self.engine.purchase(self.alice.id, product.id)

        assert result.message == "Product purchased"
        assert result.balance == Decimal("750.00")
        assert result.price == Decimal("250.00")
        assert self.store.total_balance() == Decimal("760.00")
        assert self.store.get_balance(self.bob.id) == Decimal("10.00")

        entry = self.store.list_entries(self.alice.id, 1)[0]
        assert entry.kind == EntryKind.DEBIT
        assert entry.amount == Decimal("250.00")
        assert entry.resulting_balance == Decimal("750.00")

    def test_purchase_insufficient_funds(self):
        product = self.store.add_product("Headphones", Decimal("250.00"))
        self.engine.deposit(self.alice.id, "249.99")
        before = self.snapshot()

        with pytest.raises(InsufficientFundsError):
            self.engine.purchase(self.alice.id, product.id)

        assert self.snapshot() == before

    def test_purchase_unknown_product(self):
        self.engine.deposit(self.alice.id, "100")
        with pytest.raises(NotFoundError):
            self.engine.purchase(self.alice.id, 9999)

    @pytest.mark.parametrize("product_id", [None, "1", 0, -1, 1.5, True])
    def test_purchase_invalid_product_id(self, product_id):
        with pytest.raises(ValidationError):
            self.engine.purchase(self.alice.id, product_id)

    # Balance reader

    def test_balance_in_base_currency(self):
        """Test the default currency needs no rate lookup"""
        self.engine.deposit(self.alice.id, "1000")

        result = self.engine.get_balance(self.alice.id)

        assert result.balance == Decimal("1000.00")
        assert result.currency == "INR"
        assert self.rates.calls == 0

    def test_balance_converted(self):
        self.engine.deposit(self.alice.id, "1000")

        result = self.engine.get_balance(self.alice.id, "usd")

        assert result.balance == Decimal("12.00")
        assert result.currency == "USD"
        # Committed balance is unaffected by the read
        assert self.store.get_balance(self.alice.id) == Decimal("1000.00")

    def test_conversion_rounds_half_up(self):
        self.rates.rates["GBP"] = "0.125"
        self.engine.deposit(self.alice.id, "1")
        assert self.engine.get_balance(self.alice.id, "GBP").balance == Decimal("0.13")

    def test_conversion_unavailable(self):
        self.engine.deposit(self.alice.id, "1000")
        with pytest.raises(ConversionUnavailableError):
            self.engine.get_balance(self.alice.id, "JPY")

    def test_out_of_range_rate_is_conversion_failure(self):
        """Test a rate too large to round reports conversion unavailable"""
        self.rates.rates["XAU"] = "1e30"
        self.engine.deposit(self.alice.id, "1000")
        with pytest.raises(ConversionUnavailableError):
            self.engine.get_balance(self.alice.id, "XAU")

    def test_invalid_currency(self):
        with pytest.raises(ValidationError):
            self.engine.get_balance(self.alice.id, "DOLLARS")

    def test_balance_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.engine.get_balance("no-such-account")

    # History reader

    def test_history_replays_balance_trajectory(self):
        """Test each entry carries the balance right after it"""
        product = self.store.add_product("Pen", Decimal("5.00"))
        self.engine.deposit(self.alice.id, "100")
        self.engine.transfer(self.alice.id, "bob", "30")
        self.engine.purchase(self.alice.id, product.id)
        self.engine.deposit(self.alice.id, "0.50")

        page = self.engine.get_history(self.alice.id)
        items = page.to_dict()["entries"]

        assert page.next_cursor is None
        assert [(i["kind"], i["amount"], i["resulting_balance"]) for i in items] == [
            ("credit", "0.50", "65.50"),
            ("debit", "5.00", "65.00"),
            ("debit", "30.00", "70.00"),
            ("credit", "100.00", "100.00"),
        ]
        timestamps = [e.timestamp for e in page.entries]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_history_empty(self):
        page = self.engine.get_history(self.bob.id)
        assert page.entries == []
        assert page.next_cursor is None

    def test_history_paging(self):
        """Test pages concatenate to the full history without gaps"""
        for i in range(1, 6):
            self.engine.deposit(self.alice.id, str(i))

        full = self.engine.get_history(self.alice.id).entries
        first = self.engine.get_history(self.alice.id, limit=2)
        second = self.engine.get_history(self.alice.id, limit=2, cursor=first.next_cursor)
        third = self.engine.get_history(self.alice.id, limit=2, cursor=second.next_cursor)

        assert len(first.entries) == 2 and first.next_cursor
        assert len(second.entries) == 2 and second.next_cursor
        assert len(third.entries) == 1 and third.next_cursor is None
        assert [e.id for e in first.entries + second.entries + third.entries] == [e.id for e in full]

    def test_history_limit_capped(self):
        engine = LedgerEngine(self.store, self.rates, make_config(history_max_page_size=3))
        for _ in range(5):
            engine.deposit(self.alice.id, "1")

        page = engine.get_history(self.alice.id, limit=100)
        assert len(page.entries) == 3
        assert page.next_cursor is not None

    @pytest.mark.parametrize("limit", [0, -1])
    def test_history_invalid_limit(self, limit):
        with pytest.raises(ValidationError):
            self.engine.get_history(self.alice.id, limit=limit)

    @pytest.mark.parametrize("cursor", ["!!!", "abc", encode_cursor(1)[:-1] + "*", "c2VxOi0x"])
    def test_history_invalid_cursor(self, cursor):
        with pytest.raises(ValidationError):
            self.engine.get_history(self.alice.id, cursor=cursor)

    # Accounts

    def test_open_account_validation(self):
        with pytest.raises(ValidationError):
            self.engine.open_account("alice")
        with pytest.raises(ValidationError):
            self.engine.open_account("  ")

    def test_new_account_starts_empty(self):
        carol = self.engine.open_account("carol")
        assert self.engine.get_balance(carol.id).balance == Decimal("0.00")
        assert self.engine.get_history(carol.id).entries == []


class TestInMemoryEngine(_EngineCases):
    """Run engine properties on the in-memory store"""

    unit_class = _InMemoryUnit

    def make_store(self):
        return InMemoryLedgerStore()


class TestSQLiteEngine(_EngineCases):
    """Run engine properties on the SQLite store"""

    unit_class = _SQLiteUnit

    def make_store(self):
        return SQLiteLedgerStore(":memory:")


class TestCursor:
    """Test continuation token encoding"""

    def test_round_trip(self):
        assert decode_cursor(encode_cursor(42)) == 42

    def test_token_is_opaque(self):
        assert "42" not in encode_cursor(42)
