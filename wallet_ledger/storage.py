"""
Ledger Store Module

Durable storage for account balances, the append-only ledger entry log and
the product catalog. Provides an abstract store interface with in-memory
(testing), SQLite (single node) and PostgreSQL (production) backends.

Every money movement runs inside ``store.atomic()``, which yields a
LedgerUnit: a connection-scope handle that locks the touched accounts,
stages balance writes and entries, and commits or rolls back as a whole.
The unit is released on every exit path. Monetary values are Decimal in
memory and NUMERIC/TEXT in the database, never float.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union
import sqlite3
import threading
import uuid

from .errors import LedgerError, StorageError, ValidationError
from .ledger import Account, EntryKind, LedgerEntry, Product
from .logging_config import get_logger
from .money import parse_amount

logger = get_logger("wallet.storage")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_entry_timestamp(last: Optional[datetime]) -> datetime:
    """Write time for a new entry, never earlier than the account's previous entry"""
    now = utc_now()
    if last is not None and last > now:
        return last
    return now


class LedgerUnit(ABC):
    """
    Handle for one atomic unit of work

    Callers lock every account they will write with a single
    lock_accounts() call before reading balances they intend to act on.
    """

    @abstractmethod
    def lock_accounts(self, account_ids: Iterable[str]) -> None:
        """Acquire exclusive access to accounts, in ascending id order"""
        pass

    @abstractmethod
    def get_balance(self, account_id: str) -> Optional[Decimal]:
        """Balance as seen by this unit, None if the account does not exist"""
        pass

    @abstractmethod
    def set_balance(self, account_id: str, balance: Decimal) -> None:
        """Stage a new balance for a locked account"""
        pass

    @abstractmethod
    def append_entry(
        self,
        account_id: str,
        kind: EntryKind,
        amount: Decimal,
        resulting_balance: Decimal
    ) -> LedgerEntry:
        """Stage an append to the ledger entry log"""
        pass

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]:
        """Catalog lookup at purchase time"""
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    def release(self) -> None:
        """Give back locks and connections (default no-op)"""
        pass


class LedgerStore(ABC):
    """Abstract interface for ledger storage backends"""

    @abstractmethod
    def _begin(self) -> LedgerUnit:
        """Open a new atomic unit"""
        pass

    @abstractmethod
    def create_account(self, username: str) -> Account:
        """Create a zero-balance account; duplicate usernames are rejected"""
        pass

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    def find_account_id(self, username: str) -> Optional[str]:
        """Resolve a username to its account id"""
        pass

    @abstractmethod
    def get_balance(self, account_id: str) -> Optional[Decimal]:
        """Committed balance, None if the account does not exist"""
        pass

    @abstractmethod
    def list_entries(
        self,
        account_id: str,
        limit: int,
        before_seq: Optional[int] = None
    ) -> List[LedgerEntry]:
        """
        Entries for an account, newest first (timestamp DESC, seq DESC)

        Per account, seq order and timestamp order agree, so before_seq is a
        stable continuation point.
        """
        pass

    @abstractmethod
    def count_entries(self, account_id: str) -> int:
        pass

    @abstractmethod
    def total_balance(self) -> Decimal:
        """Sum of all account balances"""
        pass

    @abstractmethod
    def add_product(self, name: str, price: Decimal, description: Optional[str] = None) -> Product:
        """Seed the catalog; name must be non-empty and price positive with at most 2 places"""
        pass

    @staticmethod
    def _checked_product(name, price) -> tuple:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Valid name and price required")
        try:
            value = parse_amount(price)
        except ValidationError as e:
            raise ValidationError(f"Valid name and price required: {e}") from e
        return name.strip(), value

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]:
        pass

    @abstractmethod
    def list_products(self) -> List[Product]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @contextmanager
    def atomic(self) -> Iterator[LedgerUnit]:
        """
        Context manager for one atomic unit

        LedgerErrors raised inside the block roll back and propagate as-is.
        Any other exception rolls back and surfaces as StorageError.
        """
        try:
            unit = self._begin()
        except LedgerError:
            raise
        except Exception as e:
            raise StorageError(f"Could not start atomic unit: {e}") from e

        try:
            yield unit
            unit.commit()
        except LedgerError:
            self._rollback(unit)
            raise
        except Exception as e:
            self._rollback(unit)
            logger.error(f"Atomic unit rolled back: {e}")
            raise StorageError(f"Atomic unit rolled back: {e}") from e
        finally:
            unit.release()

    @staticmethod
    def _rollback(unit: LedgerUnit) -> None:
        try:
            unit.rollback()
        except Exception:
            # The caller re-raises the error that triggered the rollback
            logger.exception("Rollback failed")


class _InMemoryUnit(LedgerUnit):
    """Unit that stages writes and applies them under the store lock on commit"""

    def __init__(self, store: 'InMemoryLedgerStore'):
        self._store = store
        self._held: List[threading.Lock] = []
        self._locked: set = set()
        self._balances: Dict[str, Decimal] = {}
        self._entries: List[LedgerEntry] = []
        self._last_timestamps: Dict[str, datetime] = {}

    def lock_accounts(self, account_ids: Iterable[str]) -> None:
        for account_id in sorted(set(account_ids)):
            if account_id in self._locked:
                continue
            lock = self._store._account_lock(account_id)
            if lock is None:
                continue  # Unknown account, nothing to protect
            lock.acquire()
            self._held.append(lock)
            self._locked.add(account_id)

    def get_balance(self, account_id: str) -> Optional[Decimal]:
        if account_id in self._balances:
            return self._balances[account_id]
        return self._store.get_balance(account_id)

    def set_balance(self, account_id: str, balance: Decimal) -> None:
        if account_id not in self._locked:
            raise RuntimeError(f"Account {account_id} written without holding its lock")
        self._balances[account_id] = balance

    def append_entry(self, account_id, kind, amount, resulting_balance) -> LedgerEntry:
        last = self._last_timestamps.get(account_id) or self._store._last_timestamp(account_id)
        entry = LedgerEntry(
            id=str(uuid.uuid4()),
            account_id=account_id,
            kind=kind,
            amount=amount,
            resulting_balance=resulting_balance,
            timestamp=next_entry_timestamp(last)
        )
        self._last_timestamps[account_id] = entry.timestamp
        self._entries.append(entry)
        return entry

    def get_product(self, product_id: int) -> Optional[Product]:
        return self._store.get_product(product_id)

    def commit(self) -> None:
        self._store._apply(self._balances, self._entries)
        self._balances = {}
        self._entries = []

    def rollback(self) -> None:
        self._balances = {}
        self._entries = []

    def release(self) -> None:
        for lock in reversed(self._held):
            lock.release()
        self._held = []
        self._locked = set()


class InMemoryLedgerStore(LedgerStore):
    """In-memory ledger store for testing"""

    def __init__(self):
        self._accounts: Dict[str, Account] = {}
        self._usernames: Dict[str, str] = {}
        self._entries: List[LedgerEntry] = []
        self._last_timestamps: Dict[str, datetime] = {}
        self._products: Dict[int, Product] = {}
        self._account_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.RLock()
        self._next_seq = 1
        self._next_product_id = 1

    def _begin(self) -> LedgerUnit:
        return _InMemoryUnit(self)

    def _account_lock(self, account_id: str) -> Optional[threading.Lock]:
        with self._lock:
            return self._account_locks.get(account_id)

    def _last_timestamp(self, account_id: str) -> Optional[datetime]:
        with self._lock:
            return self._last_timestamps.get(account_id)

    def _apply(self, balances: Dict[str, Decimal], entries: List[LedgerEntry]) -> None:
        """Publish a unit's staged writes in one step"""
        with self._lock:
            for account_id in balances:
                if account_id not in self._accounts:
                    raise RuntimeError(f"Account {account_id} vanished during unit")
            for account_id, balance in balances.items():
                self._accounts[account_id].balance = balance
            for entry in entries:
                stored = replace(entry, seq=self._next_seq)
                self._next_seq += 1
                self._entries.append(stored)
                self._last_timestamps[stored.account_id] = stored.timestamp

    def create_account(self, username: str) -> Account:
        with self._lock:
            if username in self._usernames:
                raise ValidationError("Username already exists")
            account = Account(
                id=str(uuid.uuid4()),
                username=username,
                balance=Decimal('0.00'),
                created_at=utc_now()
            )
            self._accounts[account.id] = account
            self._usernames[username] = account.id
            self._account_locks[account.id] = threading.Lock()
            return replace(account)

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(account_id)
            # Copy to prevent external mutation
            return replace(account) if account else None

    def find_account_id(self, username: str) -> Optional[str]:
        with self._lock:
            return self._usernames.get(username)

    def get_balance(self, account_id: str) -> Optional[Decimal]:
        with self._lock:
            account = self._accounts.get(account_id)
            return account.balance if account else None

    def list_entries(self, account_id, limit, before_seq=None) -> List[LedgerEntry]:
        with self._lock:
            entries = [
                e for e in self._entries
                if e.account_id == account_id and (before_seq is None or e.seq < before_seq)
            ]
        entries.sort(key=lambda e: (e.timestamp, e.seq), reverse=True)
        return entries[:limit]

    def count_entries(self, account_id: str) -> int:
        with self._lock:
            return sum(1 for e in self._entries if e.account_id == account_id)

    def total_balance(self) -> Decimal:
        with self._lock:
            return sum((a.balance for a in self._accounts.values()), Decimal('0.00'))

    def add_product(self, name, price, description=None) -> Product:
        name, price = self._checked_product(name, price)
        with self._lock:
            product = Product(
                id=self._next_product_id,
                name=name,
                price=price,
                description=description
            )
            self._products[product.id] = product
            self._next_product_id += 1
            return replace(product)

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            return replace(product) if product else None

    def list_products(self) -> List[Product]:
        with self._lock:
            return [replace(p) for p in sorted(self._products.values(), key=lambda p: p.id)]

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


def _format_ts(value: datetime) -> str:
    # Fixed width so that text ordering matches time ordering
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class _SQLiteUnit(LedgerUnit):
    """
    Unit that owns the store connection for its whole lifetime

    BEGIN IMMEDIATE takes SQLite's write lock up front, so units are
    serialized and a balance read inside one can never be stale.
    """

    def __init__(self, store: 'SQLiteLedgerStore'):
        self._store = store
        self._conn = store._connection
        store._lock.acquire()
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except Exception:
            store._lock.release()
            raise
        self._open = True

    def lock_accounts(self, account_ids: Iterable[str]) -> None:
        # The database write lock already covers every row
        pass

    def get_balance(self, account_id: str) -> Optional[Decimal]:
        row = self._conn.execute(
            "SELECT balance FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return Decimal(row['balance']) if row else None

    def set_balance(self, account_id: str, balance: Decimal) -> None:
        cursor = self._conn.execute(
            "UPDATE accounts SET balance = ? WHERE id = ?", (str(balance), account_id)
        )
        if cursor.rowcount != 1:
            raise RuntimeError(f"Balance update for {account_id} touched {cursor.rowcount} rows")

    def append_entry(self, account_id, kind, amount, resulting_balance) -> LedgerEntry:
        row = self._conn.execute(
            "SELECT MAX(timestamp) AS last FROM ledger_entries WHERE account_id = ?",
            (account_id,)
        ).fetchone()
        last = _parse_ts(row['last']) if row and row['last'] else None

        entry_id = str(uuid.uuid4())
        timestamp = next_entry_timestamp(last)
        cursor = self._conn.execute("""
            INSERT INTO ledger_entries (id, account_id, kind, amount, resulting_balance, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (entry_id, account_id, kind.value, str(amount), str(resulting_balance), _format_ts(timestamp)))

        return LedgerEntry(
            id=entry_id,
            account_id=account_id,
            kind=kind,
            amount=amount,
            resulting_balance=resulting_balance,
            timestamp=timestamp,
            seq=cursor.lastrowid
        )

    def get_product(self, product_id: int) -> Optional[Product]:
        row = self._conn.execute(
            "SELECT id, name, price, description FROM products WHERE id = ?", (product_id,)
        ).fetchone()
        return SQLiteLedgerStore._product_from_row(row) if row else None

    def commit(self) -> None:
        self._conn.execute("COMMIT")
        self._open = False

    def rollback(self) -> None:
        if self._open:
            self._open = False
            self._conn.execute("ROLLBACK")

    def release(self) -> None:
        if self._store is not None:
            self._store._lock.release()
            self._store = None


class SQLiteLedgerStore(LedgerStore):
    """SQLite ledger store for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Autocommit mode; units issue BEGIN IMMEDIATE / COMMIT / ROLLBACK themselves
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = FULL")
            self._connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema()

    def _ensure_schema(self) -> None:
        self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                username TEXT UNIQUE NOT NULL,
                balance TEXT NOT NULL DEFAULT '0.00',
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS ledger_entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                kind TEXT NOT NULL CHECK (kind IN ('credit', 'debit')),
                amount TEXT NOT NULL,
                resulting_balance TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_ledger_entries_account_ts
                ON ledger_entries(account_id, timestamp DESC, seq DESC);
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                price TEXT NOT NULL,
                description TEXT
            );
        """)

    @contextmanager
    def _guard(self):
        """Serialize access to the shared connection and map driver errors"""
        with self._lock:
            try:
                yield self._connection
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    def _begin(self) -> LedgerUnit:
        return _SQLiteUnit(self)

    @staticmethod
    def _product_from_row(row) -> Product:
        return Product(
            id=row['id'],
            name=row['name'],
            price=Decimal(row['price']),
            description=row['description']
        )

    @staticmethod
    def _entry_from_row(row) -> LedgerEntry:
        return LedgerEntry(
            id=row['id'],
            account_id=row['account_id'],
            kind=EntryKind(row['kind']),
            amount=Decimal(row['amount']),
            resulting_balance=Decimal(row['resulting_balance']),
            timestamp=_parse_ts(row['timestamp']),
            seq=row['seq']
        )

    def create_account(self, username: str) -> Account:
        account = Account(
            id=str(uuid.uuid4()),
            username=username,
            balance=Decimal('0.00'),
            created_at=utc_now()
        )
        try:
            with self._guard() as conn:
                conn.execute(
                    "INSERT INTO accounts (id, username, balance, created_at) VALUES (?, ?, ?, ?)",
                    (account.id, account.username, str(account.balance), _format_ts(account.created_at))
                )
        except sqlite3.IntegrityError:
            raise ValidationError("Username already exists")
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT id, username, balance, created_at FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        if not row:
            return None
        return Account(
            id=row['id'],
            username=row['username'],
            balance=Decimal(row['balance']),
            created_at=_parse_ts(row['created_at'])
        )

    def find_account_id(self, username: str) -> Optional[str]:
        with self._guard() as conn:
            row = conn.execute("SELECT id FROM accounts WHERE username = ?", (username,)).fetchone()
        return row['id'] if row else None

    def get_balance(self, account_id: str) -> Optional[Decimal]:
        with self._guard() as conn:
            row = conn.execute("SELECT balance FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return Decimal(row['balance']) if row else None

    def list_entries(self, account_id, limit, before_seq=None) -> List[LedgerEntry]:
        query = """
            SELECT seq, id, account_id, kind, amount, resulting_balance, timestamp
            FROM ledger_entries WHERE account_id = ?
        """
        params: list = [account_id]
        if before_seq is not None:
            query += " AND seq < ?"
            params.append(before_seq)
        query += " ORDER BY timestamp DESC, seq DESC LIMIT ?"
        params.append(limit)

        with self._guard() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def count_entries(self, account_id: str) -> int:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM ledger_entries WHERE account_id = ?", (account_id,)
            ).fetchone()
        return row['count']

    def total_balance(self) -> Decimal:
        with self._guard() as conn:
            rows = conn.execute("SELECT balance FROM accounts").fetchall()
        # Summed in Python: SQLite would add TEXT columns as floats
        return sum((Decimal(row['balance']) for row in rows), Decimal('0.00'))

    def add_product(self, name, price, description=None) -> Product:
        name, price = self._checked_product(name, price)
        with self._guard() as conn:
            cursor = conn.execute(
                "INSERT INTO products (name, price, description) VALUES (?, ?, ?)",
                (name, str(price), description)
            )
        return Product(id=cursor.lastrowid, name=name, price=price, description=description)

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT id, name, price, description FROM products WHERE id = ?", (product_id,)
            ).fetchone()
        return self._product_from_row(row) if row else None

    def list_products(self) -> List[Product]:
        with self._guard() as conn:
            rows = conn.execute("SELECT id, name, price, description FROM products ORDER BY id").fetchall()
        return [self._product_from_row(row) for row in rows]

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class _PostgreSQLUnit(LedgerUnit):
    """Unit on a pooled connection using row-level locks"""

    def __init__(self, store: 'PostgreSQLLedgerStore'):
        self._store = store
        self._conn = store._pool.getconn()
        self._conn.autocommit = False
        self._cursors = []

    def _execute(self, sql: str, params=()):
        cursor = self._conn.cursor()
        self._cursors.append(cursor)
        cursor.execute(sql, params)
        return cursor

    def lock_accounts(self, account_ids: Iterable[str]) -> None:
        # One statement per row so the lock order is exactly ascending id
        for account_id in sorted(set(account_ids)):
            self._execute("SELECT id FROM accounts WHERE id = %s FOR UPDATE", (account_id,))

    def get_balance(self, account_id: str) -> Optional[Decimal]:
        row = self._execute("SELECT balance FROM accounts WHERE id = %s", (account_id,)).fetchone()
        return row['balance'] if row else None

    def set_balance(self, account_id: str, balance: Decimal) -> None:
        cursor = self._execute("UPDATE accounts SET balance = %s WHERE id = %s", (balance, account_id))
        if cursor.rowcount != 1:
            raise RuntimeError(f"Balance update for {account_id} touched {cursor.rowcount} rows")

    def append_entry(self, account_id, kind, amount, resulting_balance) -> LedgerEntry:
        row = self._execute(
            "SELECT MAX(timestamp) AS last FROM ledger_entries WHERE account_id = %s", (account_id,)
        ).fetchone()
        entry_id = str(uuid.uuid4())
        timestamp = next_entry_timestamp(row['last'] if row else None)
        inserted = self._execute("""
            INSERT INTO ledger_entries (id, account_id, kind, amount, resulting_balance, timestamp)
            VALUES (%s, %s, %s, %s, %s, %s) RETURNING seq
        """, (entry_id, account_id, kind.value, amount, resulting_balance, timestamp)).fetchone()
        return LedgerEntry(
            id=entry_id,
            account_id=account_id,
            kind=kind,
            amount=amount,
            resulting_balance=resulting_balance,
            timestamp=timestamp,
            seq=inserted['seq']
        )

    def get_product(self, product_id: int) -> Optional[Product]:
        row = self._execute(
            "SELECT id, name, price, description FROM products WHERE id = %s", (product_id,)
        ).fetchone()
        return PostgreSQLLedgerStore._product_from_row(row) if row else None

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def release(self) -> None:
        for cursor in self._cursors:
            cursor.close()
        self._cursors = []
        if self._conn is not None:
            self._store._pool.putconn(self._conn)
            self._conn = None


class PostgreSQLLedgerStore(LedgerStore):
    """PostgreSQL ledger store with row-level locking"""

    def __init__(self, connection_string: str, pool_size: int = 5):
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.pool
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            1, pool_size, connection_string,
            cursor_factory=psycopg2.extras.RealDictCursor
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS accounts (
                        id TEXT PRIMARY KEY,
                        username TEXT UNIQUE NOT NULL,
                        balance NUMERIC(15, 2) NOT NULL DEFAULT 0 CHECK (balance >= 0),
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                """)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS ledger_entries (
                        seq BIGSERIAL PRIMARY KEY,
                        id TEXT UNIQUE NOT NULL,
                        account_id TEXT NOT NULL REFERENCES accounts(id),
                        kind TEXT NOT NULL CHECK (kind IN ('credit', 'debit')),
                        amount NUMERIC(15, 2) NOT NULL CHECK (amount > 0),
                        resulting_balance NUMERIC(15, 2) NOT NULL CHECK (resulting_balance >= 0),
                        timestamp TIMESTAMPTZ NOT NULL
                    )
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_ledger_entries_account_ts
                    ON ledger_entries(account_id, timestamp DESC, seq DESC)
                """)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS products (
                        id SERIAL PRIMARY KEY,
                        name TEXT NOT NULL,
                        price NUMERIC(15, 2) NOT NULL CHECK (price > 0),
                        description TEXT
                    )
                """)
            finally:
                cursor.close()

    @contextmanager
    def _connection(self):
        """Autocommit connection for reads and single-statement writes"""
        conn = self._pool.getconn()
        try:
            conn.autocommit = True
            yield conn
        except self.psycopg2.IntegrityError:
            raise
        except self.psycopg2.Error as e:
            raise StorageError(str(e)) from e
        finally:
            self._pool.putconn(conn)

    def _fetchone(self, sql: str, params=()):
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return cursor.fetchone()
            finally:
                cursor.close()

    def _fetchall(self, sql: str, params=()):
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return cursor.fetchall()
            finally:
                cursor.close()

    def _begin(self) -> LedgerUnit:
        return _PostgreSQLUnit(self)

    @staticmethod
    def _product_from_row(row) -> Product:
        return Product(id=row['id'], name=row['name'], price=row['price'], description=row['description'])

    def create_account(self, username: str) -> Account:
        try:
            row = self._fetchone("""
                INSERT INTO accounts (id, username, balance) VALUES (%s, %s, 0)
                RETURNING id, username, balance, created_at
            """, (str(uuid.uuid4()), username))
        except self.psycopg2.IntegrityError:
            raise ValidationError("Username already exists")
        return Account(id=row['id'], username=row['username'], balance=row['balance'], created_at=row['created_at'])

    def get_account(self, account_id: str) -> Optional[Account]:
        row = self._fetchone(
            "SELECT id, username, balance, created_at FROM accounts WHERE id = %s", (account_id,)
        )
        if not row:
            return None
        return Account(id=row['id'], username=row['username'], balance=row['balance'], created_at=row['created_at'])

    def find_account_id(self, username: str) -> Optional[str]:
        row = self._fetchone("SELECT id FROM accounts WHERE username = %s", (username,))
        return row['id'] if row else None

    def get_balance(self, account_id: str) -> Optional[Decimal]:
        row = self._fetchone("SELECT balance FROM accounts WHERE id = %s", (account_id,))
        return row['balance'] if row else None

    def list_entries(self, account_id, limit, before_seq=None) -> List[LedgerEntry]:
        query = """
            SELECT seq, id, account_id, kind, amount, resulting_balance, timestamp
            FROM ledger_entries WHERE account_id = %s
        """
        params: list = [account_id]
        if before_seq is not None:
            query += " AND seq < %s"
            params.append(before_seq)
        query += " ORDER BY timestamp DESC, seq DESC LIMIT %s"
        params.append(limit)

        return [
            LedgerEntry(
                id=row['id'],
                account_id=row['account_id'],
                kind=EntryKind(row['kind']),
                amount=row['amount'],
                resulting_balance=row['resulting_balance'],
                timestamp=row['timestamp'],
                seq=row['seq']
            )
            for row in self._fetchall(query, params)
        ]

    def count_entries(self, account_id: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS count FROM ledger_entries WHERE account_id = %s", (account_id,)
        )
        return row['count']

    def total_balance(self) -> Decimal:
        row = self._fetchone("SELECT COALESCE(SUM(balance), 0) AS total FROM accounts")
        return Decimal(row['total'])

    def add_product(self, name, price, description=None) -> Product:
        name, price = self._checked_product(name, price)
        row = self._fetchone("""
            INSERT INTO products (name, price, description) VALUES (%s, %s, %s)
            RETURNING id, name, price, description
        """, (name, price, description))
        return self._product_from_row(row)

    def get_product(self, product_id: int) -> Optional[Product]:
        row = self._fetchone(
            "SELECT id, name, price, description FROM products WHERE id = %s", (product_id,)
        )
        return self._product_from_row(row) if row else None

    def list_products(self) -> List[Product]:
        return [
            self._product_from_row(row)
            for row in self._fetchall("SELECT id, name, price, description FROM products ORDER BY id")
        ]

    def close(self) -> None:
        """Close all pooled connections"""
        if self._pool:
            self._pool.closeall()
            self._pool = None


def create_store(database_url: str, pool_size: int = 5) -> LedgerStore:
    """
    Build a store from a database URL

    Supported: memory://, sqlite:///path/to.db, sqlite:///:memory:,
    postgresql://... (or postgres://...)
    """
    if database_url.startswith("memory://"):
        return InMemoryLedgerStore()
    if database_url.startswith("sqlite:///"):
        return SQLiteLedgerStore(database_url[len("sqlite:///"):] or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLLedgerStore(database_url, pool_size=pool_size)
    raise ValueError(f"Unsupported database URL: {database_url}")
