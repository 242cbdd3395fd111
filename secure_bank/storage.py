"""
Storage Backend Module

Credential store contract and implementations for in-memory (testing) and
SQLite (persistence). Connections are handed out by a bounded pool and must be
returned on every exit path; use ``store.connection()`` as a context manager.
All monetary values are stored as Decimal strings and all timestamps as
fixed-width UTC ISO strings so they sort lexicographically.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
from queue import LifoQueue, Empty
import sqlite3
import threading
import uuid

from .logging_config import get_logger


logger = get_logger("secure_bank.storage")


class StorageError(Exception):
    """Failure inside the storage collaborator"""
    pass


class UniqueViolation(StorageError):
    """Insert rejected by a uniqueness constraint"""

    def __init__(self, table: str, field: str):
        self.table = table
        self.field = field
        super().__init__(f"Duplicate value for {table}.{field}")


class PoolTimeout(StorageError):
    """No connection became available within the pool timeout"""
    pass


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Render a timestamp as fixed-width UTC ISO-8601"""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f") + "+00:00"


class StoreConnection(ABC):
    """One checked-out connection to the credential store"""

    @abstractmethod
    def insert_user(self, email: str, password_hash: str, full_name: str) -> int:
        """Insert a user and return its generated id"""
        pass

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Look a user up by exact email"""
        pass

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Look a user up by id"""
        pass

    @abstractmethod
    def delete_user(self, user_id: int) -> bool:
        """Delete a user, cascading to its accounts and their transactions"""
        pass

    @abstractmethod
    def insert_account(self, user_id: int, account_number: str,
                       balance: Decimal, account_type: str) -> int:
        """Insert an account and return its generated id"""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Dict[str, Any]]:
        """Look an account up by id"""
        pass

    @abstractmethod
    def find_accounts_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        """All accounts owned by a user"""
        pass

    @abstractmethod
    def insert_transaction(self, account_id: int, description: str, amount: Decimal,
                           direction: str, created_at: Optional[datetime] = None) -> int:
        """Insert a transaction and return its generated id"""
        pass

    @abstractmethod
    def recent_transactions(self, account_id: int, limit: int) -> List[Dict[str, Any]]:
        """Most recent transactions of an account, newest first"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass

    def create_schema(self) -> None:
        """Create tables if the backend needs them (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield self
            self.commit()
        except Exception:
            self.rollback()
            raise


class ConnectionPool:
    """
    Bounded pool of store connections.

    Connections are created lazily up to ``max_size``. When every connection
    is checked out, ``acquire`` blocks for up to ``timeout`` seconds and then
    raises PoolTimeout.
    """

    def __init__(self, factory: Callable[[], StoreConnection], max_size: int = 10,
                 timeout: float = 30.0):
        if max_size < 1:
            raise ValueError("Pool size must be at least 1")
        self._factory = factory
        self.max_size = max_size
        self.timeout = timeout
        self._idle: LifoQueue = LifoQueue()
        self._slots = threading.BoundedSemaphore(max_size)
        self._lock = threading.Lock()
        self._checked_out = 0
        self._closed = False

    @property
    def checked_out(self) -> int:
        """Number of connections currently lent out"""
        with self._lock:
            return self._checked_out

    def acquire(self) -> StoreConnection:
        """Check a connection out, waiting for capacity if needed"""
        if self._closed:
            raise StorageError("Connection pool is closed")

        if not self._slots.acquire(timeout=self.timeout):
            logger.warning(f"Connection pool exhausted after {self.timeout}s (size {self.max_size})")
            raise PoolTimeout(f"No connection available within {self.timeout}s")

        try:
            try:
                conn = self._idle.get_nowait()
            except Empty:
                conn = self._factory()
        except Exception:
            self._slots.release()
            raise

        with self._lock:
            self._checked_out += 1
        return conn

    def release(self, conn: StoreConnection) -> None:
        """Return a connection, rolling back anything left uncommitted"""
        try:
            if conn.in_transaction:
                conn.rollback()
            if self._closed:
                conn.close()
            else:
                self._idle.put(conn)
        finally:
            with self._lock:
                self._checked_out -= 1
            self._slots.release()

    @contextmanager
    def connection(self):
        """Scoped checkout: the connection is released on every exit path"""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close idle connections and refuse further checkouts"""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except Empty:
                break
            conn.close()


class CredentialStore(ABC):
    """Abstract credential store backed by a bounded connection pool"""

    def __init__(self, pool_size: int = 10, pool_timeout: float = 30.0):
        self.pool = ConnectionPool(self._open_connection, pool_size, pool_timeout)

    @abstractmethod
    def _open_connection(self) -> StoreConnection:
        """Open a fresh backend connection"""
        pass

    def initialize(self) -> None:
        """Create the schema if needed"""
        with self.connection() as conn:
            conn.create_schema()

    @contextmanager
    def connection(self):
        """Check a connection out of the pool for the duration of the block"""
        with self.pool.connection() as conn:
            yield conn

    def close(self) -> None:
        """Close storage connections"""
        self.pool.close()


class _MemoryDatabase:
    """Tables shared by every connection of one InMemoryStore"""

    def __init__(self):
        self.tables: Dict[str, Dict[int, Dict[str, Any]]] = {
            "users": {},
            "accounts": {},
            "transactions": {}
        }
        self.sequences: Dict[str, int] = {name: 0 for name in self.tables}
        self.lock = threading.RLock()

    def next_id(self, table: str) -> int:
        self.sequences[table] += 1
        return self.sequences[table]


class InMemoryConnection(StoreConnection):
    """Connection onto in-memory tables; a transaction holds the table lock"""

    def __init__(self, db: _MemoryDatabase):
        self._db = db
        self._undo: Optional[List[Callable[[], None]]] = None

    @property
    def in_transaction(self) -> bool:
        return self._undo is not None

    def _insert(self, table: str, row: Dict[str, Any]) -> int:
        row_id = self._db.next_id(table)
        row = dict(row, id=row_id)
        self._db.tables[table][row_id] = row
        if self._undo is not None:
            self._undo.append(lambda: self._db.tables[table].pop(row_id, None))
        return row_id

    def insert_user(self, email: str, password_hash: str, full_name: str) -> int:
        with self._db.lock:
            if any(u['email'] == email for u in self._db.tables['users'].values()):
                raise UniqueViolation("users", "email")
            return self._insert("users", {
                "email": email,
                "password_hash": password_hash,
                "full_name": full_name,
                "created_at": format_timestamp()
            })

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self._db.lock:
            for user in self._db.tables['users'].values():
                if user['email'] == email:
                    return dict(user)
            return None

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        with self._db.lock:
            user = self._db.tables['users'].get(user_id)
            return dict(user) if user else None

    def delete_user(self, user_id: int) -> bool:
        with self._db.lock:
            if self._db.tables['users'].pop(user_id, None) is None:
                return False
            accounts = self._db.tables['accounts']
            owned = [a_id for a_id, a in accounts.items() if a['user_id'] == user_id]
            for account_id in owned:
                del accounts[account_id]
            transactions = self._db.tables['transactions']
            for txn_id in [t_id for t_id, t in transactions.items() if t['account_id'] in owned]:
                del transactions[txn_id]
            return True

    def insert_account(self, user_id: int, account_number: str,
                       balance: Decimal, account_type: str) -> int:
        with self._db.lock:
            if user_id not in self._db.tables['users']:
                raise StorageError(f"User {user_id} does not exist")
            if any(a['account_number'] == account_number
                   for a in self._db.tables['accounts'].values()):
                raise UniqueViolation("accounts", "account_number")
            return self._insert("accounts", {
                "user_id": user_id,
                "account_number": account_number,
                "balance": str(balance),
                "account_type": account_type,
                "created_at": format_timestamp()
            })

    def get_account(self, account_id: int) -> Optional[Dict[str, Any]]:
        with self._db.lock:
            account = self._db.tables['accounts'].get(account_id)
            return dict(account) if account else None

    def find_accounts_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        with self._db.lock:
            return [dict(a) for a in self._db.tables['accounts'].values()
                    if a['user_id'] == user_id]

    def insert_transaction(self, account_id: int, description: str, amount: Decimal,
                           direction: str, created_at: Optional[datetime] = None) -> int:
        with self._db.lock:
            if account_id not in self._db.tables['accounts']:
                raise StorageError(f"Account {account_id} does not exist")
            return self._insert("transactions", {
                "account_id": account_id,
                "description": description,
                "amount": str(amount),
                "type": direction,
                "created_at": format_timestamp(created_at)
            })

    def recent_transactions(self, account_id: int, limit: int) -> List[Dict[str, Any]]:
        with self._db.lock:
            rows = [t for t in self._db.tables['transactions'].values()
                    if t['account_id'] == account_id]
            rows.sort(key=lambda t: (t['created_at'], t['id']), reverse=True)
            return [dict(t) for t in rows[:limit]]

    def begin_transaction(self) -> None:
        if self._undo is None:
            self._db.lock.acquire()
            self._undo = []

    def commit(self) -> None:
        if self._undo is not None:
            self._undo = None
            self._db.lock.release()

    def rollback(self) -> None:
        if self._undo is not None:
            for undo in reversed(self._undo):
                undo()
            self._undo = None
            self._db.lock.release()

    def close(self) -> None:
        self.rollback()


class InMemoryStore(CredentialStore):
    """In-memory credential store for testing"""

    def __init__(self, pool_size: int = 10, pool_timeout: float = 30.0):
        self._db = _MemoryDatabase()
        super().__init__(pool_size, pool_timeout)

    def _open_connection(self) -> StoreConnection:
        return InMemoryConnection(self._db)


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    full_name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    account_number TEXT NOT NULL UNIQUE,
    balance TEXT NOT NULL DEFAULT '5000.00',
    account_type TEXT NOT NULL DEFAULT 'Compte Courant',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    description TEXT NOT NULL,
    amount TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('debit', 'credit')),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accounts_user_id ON accounts(user_id);
CREATE INDEX IF NOT EXISTS idx_transactions_account_created
    ON transactions(account_id, created_at);
"""


class SQLiteConnection(StoreConnection):
    """Single SQLite connection in autocommit mode with explicit transactions"""

    def __init__(self, connection: sqlite3.Connection, wal: bool = False):
        self._connection = connection
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")
        if wal:
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("PRAGMA synchronous = NORMAL")

    @property
    def in_transaction(self) -> bool:
        return self._connection.in_transaction

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._connection.execute(sql, params)
        except sqlite3.IntegrityError as e:
            message = str(e)
            if message.startswith("UNIQUE constraint failed:"):
                table, _, field = message.split(":", 1)[1].strip().partition(".")
                raise UniqueViolation(table, field) from e
            raise StorageError(message) from e
        except (sqlite3.Error, OverflowError) as e:
            raise StorageError(str(e)) from e

    def create_schema(self) -> None:
        try:
            self._connection.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def insert_user(self, email: str, password_hash: str, full_name: str) -> int:
        cursor = self._execute(
            "INSERT INTO users (email, password_hash, full_name, created_at) VALUES (?, ?, ?, ?)",
            (email, password_hash, full_name, format_timestamp())
        )
        return cursor.lastrowid

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        row = self._execute(
            "SELECT id, email, password_hash, full_name, created_at FROM users WHERE email = ?",
            (email,)
        ).fetchone()
        return dict(row) if row else None

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        row = self._execute(
            "SELECT id, email, password_hash, full_name, created_at FROM users WHERE id = ?",
            (user_id,)
        ).fetchone()
        return dict(row) if row else None

    def delete_user(self, user_id: int) -> bool:
        cursor = self._execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cursor.rowcount > 0

    def insert_account(self, user_id: int, account_number: str,
                       balance: Decimal, account_type: str) -> int:
        cursor = self._execute(
            "INSERT INTO accounts (user_id, account_number, balance, account_type, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, account_number, str(balance), account_type, format_timestamp())
        )
        return cursor.lastrowid

    def get_account(self, account_id: int) -> Optional[Dict[str, Any]]:
        row = self._execute(
            "SELECT id, user_id, account_number, balance, account_type, created_at "
            "FROM accounts WHERE id = ?",
            (account_id,)
        ).fetchone()
        return dict(row) if row else None

    def find_accounts_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        rows = self._execute(
            "SELECT id, user_id, account_number, balance, account_type, created_at "
            "FROM accounts WHERE user_id = ?",
            (user_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    def insert_transaction(self, account_id: int, description: str, amount: Decimal,
                           direction: str, created_at: Optional[datetime] = None) -> int:
        cursor = self._execute(
            "INSERT INTO transactions (account_id, description, amount, type, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (account_id, description, str(amount), direction, format_timestamp(created_at))
        )
        return cursor.lastrowid

    def recent_transactions(self, account_id: int, limit: int) -> List[Dict[str, Any]]:
        rows = self._execute(
            "SELECT id, account_id, description, amount, type, created_at FROM transactions "
            "WHERE account_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (account_id, limit)
        ).fetchall()
        return [dict(row) for row in rows]

    def begin_transaction(self) -> None:
        if not self.in_transaction:
            self._execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        if self.in_transaction:
            self._execute("COMMIT")

    def rollback(self) -> None:
        if self.in_transaction:
            self._execute("ROLLBACK")

    def close(self) -> None:
        self._connection.close()


class SQLiteStore(CredentialStore):
    """SQLite credential store for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", pool_size: int = 10,
                 pool_timeout: float = 30.0):
        self.db_path = str(db_path)
        if self.db_path == ":memory:":
            # Every pooled connection must see the same private database
            self._target = f"file:secure_bank_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
        else:
            self._target = self.db_path
            self._uri = False
        self._busy_timeout = pool_timeout
        super().__init__(pool_size, pool_timeout)

    def _open_connection(self) -> StoreConnection:
        try:
            raw = sqlite3.connect(
                self._target,
                uri=self._uri,
                timeout=self._busy_timeout,
                isolation_level=None,
                check_same_thread=False
            )
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        return SQLiteConnection(raw, wal=not self._uri)


def create_store(database_url: str, pool_size: int = 10,
                 pool_timeout: float = 30.0) -> CredentialStore:
    """
    Build a credential store from a database URL.

    Supported URLs: ``memory://``, ``sqlite://`` (private in-memory SQLite)
    and ``sqlite:///path/to/file.db``.
    """
    if database_url == "memory://":
        return InMemoryStore(pool_size, pool_timeout)
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStore(path or ":memory:", pool_size, pool_timeout)
    raise ValueError(f"Unsupported database URL: {database_url}")
